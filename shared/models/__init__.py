"""Pydantic models shared across services."""

from .patient import (
    Patient,
    PatientCreateRequest,
    PatientResponse,
    PatientUpdateRequest,
)

__all__ = [
    "Patient",
    "PatientCreateRequest",
    "PatientResponse",
    "PatientUpdateRequest",
]
