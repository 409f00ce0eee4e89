"""Protocol buffer bindings shared between services."""
