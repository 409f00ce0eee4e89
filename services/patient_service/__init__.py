"""Patient registration service backed by a uniqueness-checked store."""
