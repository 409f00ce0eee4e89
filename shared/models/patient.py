"""Patient models exchanged by the patient service and its clients."""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

NAME_MAX_LENGTH = 100


def to_camel(value: str) -> str:
    """Convert ``snake_case`` ``value`` into ``camelCase`` for JSON aliases."""

    first, *rest = value.split("_")
    return first + "".join(token.capitalize() for token in rest)


def normalize_email(value: str) -> str:
    """Return the case-folded key used to compare e-mail addresses.

    Stored addresses keep the spelling they were validated with; only
    lookups go through this key.
    """

    return value.strip().lower()


class CamelModel(BaseModel):
    """Base model applying camelCase aliases and ignoring unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Patient(CamelModel):
    """A stored patient record."""

    model_config = ConfigDict(validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(max_length=NAME_MAX_LENGTH)
    email: str
    address: str
    date_of_birth: date
    registered_date: date


class _PatientFields(CamelModel):
    name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    address: str = Field(min_length=1)
    date_of_birth: date

    @field_validator("name", "address", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class PatientUpdateRequest(_PatientFields):
    """Payload accepted when editing a patient profile.

    ``registeredDate`` may be sent but is ignored; it is fixed at creation.
    """

    registered_date: date | None = None


class PatientCreateRequest(_PatientFields):
    """Payload accepted when registering a patient."""

    registered_date: date


class PatientResponse(CamelModel):
    """Public representation of a patient."""

    id: UUID
    name: str
    email: str
    address: str
    date_of_birth: date

    @classmethod
    def from_patient(cls, patient: Patient) -> "PatientResponse":
        return cls(
            id=patient.id,
            name=patient.name,
            email=patient.email,
            address=patient.address,
            date_of_birth=patient.date_of_birth,
        )


__all__ = [
    "CamelModel",
    "NAME_MAX_LENGTH",
    "Patient",
    "PatientCreateRequest",
    "PatientResponse",
    "PatientUpdateRequest",
    "normalize_email",
    "to_camel",
]
