"""Service modules for the patient management application."""

__all__ = [
    "billing_service",
    "patient_service",
]
