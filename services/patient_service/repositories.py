"""Patient store backends.

Both backends expose the same coroutine API. E-mail uniqueness is a
read-before-write guard performed by the caller through
:meth:`exists_by_email` / :meth:`exists_by_email_and_id_not`; the SQL backend
additionally carries a unique index on ``lower(email)``. Addresses are stored
as given and compared case-insensitively.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Protocol
from uuid import UUID

from sqlalchemy import (
    Column,
    Date,
    Index,
    MetaData,
    String,
    Table,
    Uuid,
    delete,
    exists,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from shared.models.patient import NAME_MAX_LENGTH, Patient, normalize_email
from shared.observability.logger import get_logger

logger = get_logger(__name__)

EMAIL_INDEX_NAME = "uq_patient_email_lower"


class StorageError(RuntimeError):
    """Raised when the patient store cannot complete an operation."""


class ConstraintViolationError(StorageError):
    """Raised when the store rejects a write because of a constraint."""

    def __init__(
        self,
        message: str,
        *,
        constraint: str | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.constraint = constraint
        self.original = original


class PatientRepository(Protocol):
    """Contract implemented by patient store backends."""

    async def list_patients(self) -> list[Patient]: ...

    async def get_patient(self, patient_id: UUID) -> Patient | None: ...

    async def add_patient(self, patient: Patient) -> Patient: ...

    async def update_patient(self, patient: Patient) -> Patient | None: ...

    async def delete_patient(self, patient_id: UUID) -> bool: ...

    async def exists_by_email(self, email: str) -> bool: ...

    async def exists_by_email_and_id_not(self, email: str, patient_id: UUID) -> bool: ...


class InMemoryPatientRepository:
    """Dictionary-backed store, used when no database is configured."""

    def __init__(self, patients: Iterable[Patient] | None = None) -> None:
        self._patients: dict[UUID, Patient] = {}
        for patient in patients or ():
            self._patients[patient.id] = patient.model_copy(deep=True)

    @staticmethod
    def _sorted(patients: Iterable[Patient]) -> list[Patient]:
        return sorted(patients, key=lambda patient: (patient.name, str(patient.id)))

    async def list_patients(self) -> list[Patient]:
        return [
            patient.model_copy(deep=True)
            for patient in self._sorted(self._patients.values())
        ]

    async def get_patient(self, patient_id: UUID) -> Patient | None:
        patient = self._patients.get(patient_id)
        return patient.model_copy(deep=True) if patient is not None else None

    async def add_patient(self, patient: Patient) -> Patient:
        if patient.id in self._patients:
            raise ConstraintViolationError(
                f"Patient '{patient.id}' already exists.", constraint="patient_pkey"
            )
        if await self.exists_by_email(patient.email):
            raise ConstraintViolationError(
                "Email address already stored.", constraint=EMAIL_INDEX_NAME
            )
        self._patients[patient.id] = patient.model_copy(deep=True)
        return patient.model_copy(deep=True)

    async def update_patient(self, patient: Patient) -> Patient | None:
        if patient.id not in self._patients:
            return None
        if await self.exists_by_email_and_id_not(patient.email, patient.id):
            raise ConstraintViolationError(
                "Email address already stored.", constraint=EMAIL_INDEX_NAME
            )
        self._patients[patient.id] = patient.model_copy(deep=True)
        return patient.model_copy(deep=True)

    async def delete_patient(self, patient_id: UUID) -> bool:
        return self._patients.pop(patient_id, None) is not None

    async def exists_by_email(self, email: str) -> bool:
        """Return ``True`` when any stored patient uses ``email``."""

        target = normalize_email(email)
        return any(
            normalize_email(patient.email) == target
            for patient in self._patients.values()
        )

    async def exists_by_email_and_id_not(self, email: str, patient_id: UUID) -> bool:
        """Return ``True`` when a patient other than ``patient_id`` uses ``email``."""

        target = normalize_email(email)
        return any(
            normalize_email(patient.email) == target and patient.id != patient_id
            for patient in self._patients.values()
        )


metadata = MetaData()

patient_table = Table(
    "patient",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(NAME_MAX_LENGTH), nullable=False),
    Column("email", String(320), nullable=False),
    Column("address", String, nullable=False),
    Column("date_of_birth", Date, nullable=False),
    Column("registered_date", Date, nullable=False),
)

Index(EMAIL_INDEX_NAME, func.lower(patient_table.c.email), unique=True)


def _row_values(patient: Patient) -> dict[str, Any]:
    return patient.model_dump(by_alias=False)


def _email_matches(email: str):
    return func.lower(patient_table.c.email) == normalize_email(email)


def _constraint_name(exc: IntegrityError) -> str | None:
    diag = getattr(getattr(exc, "orig", None), "diag", None)
    return getattr(diag, "constraint_name", None)


class SqlPatientRepository:
    """Patient store backed by a SQLAlchemy async engine."""

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        if engine is None and not database_url:
            raise ValueError("Either database_url or engine must be provided.")
        self._engine: AsyncEngine = engine or create_async_engine(
            database_url, pool_pre_ping=True
        )

    @asynccontextmanager
    async def _connect(self, *, write: bool = False) -> AsyncIterator[AsyncConnection]:
        """Yield a connection, translating driver failures into ``StorageError``."""

        try:
            if write:
                async with self._engine.begin() as connection:
                    yield connection
            else:
                async with self._engine.connect() as connection:
                    yield connection
        except IntegrityError as exc:
            raise ConstraintViolationError(
                "Database constraint violated while writing a patient.",
                constraint=_constraint_name(exc),
                original=exc,
            ) from exc
        except (DBAPIError, SQLAlchemyError, OSError) as exc:
            logger.warning("patient_store_error", error=str(exc))
            raise StorageError("Patient store is unavailable.") from exc

    async def create_schema(self) -> None:
        """Create the ``patient`` table if it does not exist."""

        async with self._connect(write=True) as connection:
            await connection.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        """Dispose of the underlying engine."""

        await self._engine.dispose()

    async def list_patients(self) -> list[Patient]:
        query = select(patient_table).order_by(patient_table.c.name, patient_table.c.id)
        async with self._connect() as connection:
            result = await connection.execute(query)
            return [Patient.model_validate(dict(row)) for row in result.mappings()]

    async def get_patient(self, patient_id: UUID) -> Patient | None:
        query = select(patient_table).where(patient_table.c.id == patient_id)
        async with self._connect() as connection:
            row = (await connection.execute(query)).mappings().first()
        return Patient.model_validate(dict(row)) if row is not None else None

    async def add_patient(self, patient: Patient) -> Patient:
        async with self._connect(write=True) as connection:
            await connection.execute(insert(patient_table).values(**_row_values(patient)))
        return patient

    async def update_patient(self, patient: Patient) -> Patient | None:
        values = _row_values(patient)
        patient_id = values.pop("id")
        statement = (
            update(patient_table)
            .where(patient_table.c.id == patient_id)
            .values(**values)
        )
        async with self._connect(write=True) as connection:
            result = await connection.execute(statement)
        if result.rowcount == 0:
            return None
        return patient

    async def delete_patient(self, patient_id: UUID) -> bool:
        statement = delete(patient_table).where(patient_table.c.id == patient_id)
        async with self._connect(write=True) as connection:
            result = await connection.execute(statement)
        return result.rowcount > 0

    async def exists_by_email(self, email: str) -> bool:
        """Return ``True`` when any stored patient uses ``email``."""

        query = select(exists().where(_email_matches(email)))
        async with self._connect() as connection:
            return bool(await connection.scalar(query))

    async def exists_by_email_and_id_not(self, email: str, patient_id: UUID) -> bool:
        """Return ``True`` when a patient other than ``patient_id`` uses ``email``."""

        query = select(
            exists().where(
                _email_matches(email),
                patient_table.c.id != patient_id,
            )
        )
        async with self._connect() as connection:
            return bool(await connection.scalar(query))


__all__ = [
    "ConstraintViolationError",
    "EMAIL_INDEX_NAME",
    "InMemoryPatientRepository",
    "PatientRepository",
    "SqlPatientRepository",
    "StorageError",
    "metadata",
    "patient_table",
]
