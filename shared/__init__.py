"""Code shared by the patient management services."""
