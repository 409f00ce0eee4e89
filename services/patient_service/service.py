"""Patient registration and profile management."""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from shared.http.errors import (
    BillingUnavailableError,
    EmailAlreadyExistsError,
    PatientNotFoundError,
)
from shared.models.patient import Patient, PatientCreateRequest, PatientUpdateRequest
from shared.observability.logger import get_logger

from .billing_client import BillingAccount, BillingServiceError
from .repositories import ConstraintViolationError, PatientRepository

logger = get_logger(__name__)


class BillingAccountOpener(Protocol):
    async def create_billing_account(
        self, patient_id: UUID | str, name: str, email: str
    ) -> BillingAccount: ...


class PatientService:
    """Coordinates the patient store and the billing service."""

    def __init__(
        self,
        repository: PatientRepository,
        billing: BillingAccountOpener | None = None,
    ) -> None:
        self._repository = repository
        self._billing = billing

    async def list_patients(self) -> list[Patient]:
        return await self._repository.list_patients()

    async def get_patient(self, patient_id: UUID) -> Patient:
        patient = await self._repository.get_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    async def create_patient(self, request: PatientCreateRequest) -> Patient:
        """Store a new patient and open its billing account.

        When the billing call fails in any way the stored patient is removed
        again, so a patient never exists without an acknowledged account.
        Errors surface as :class:`BillingUnavailableError`; cancellation is
        re-raised unchanged once the patient is removed.
        """

        if await self._repository.exists_by_email(request.email):
            raise EmailAlreadyExistsError(request.email)

        patient = Patient(
            name=request.name,
            email=request.email,
            address=request.address,
            date_of_birth=request.date_of_birth,
            registered_date=request.registered_date,
        )
        try:
            patient = await self._repository.add_patient(patient)
        except ConstraintViolationError as exc:
            raise EmailAlreadyExistsError(request.email) from exc

        if self._billing is not None:
            try:
                await self._billing.create_billing_account(
                    patient.id, patient.name, patient.email
                )
            except BaseException as exc:
                await self._remove_unbilled_patient(patient, exc)
                if not isinstance(exc, Exception):
                    raise
                if isinstance(exc, BillingServiceError):
                    reason = exc.code.name if exc.code is not None else None
                else:
                    reason = type(exc).__name__
                raise BillingUnavailableError(reason=reason) from exc

        logger.info("patient_created", patient_id=str(patient.id))
        return patient

    async def _remove_unbilled_patient(
        self, patient: Patient, cause: BaseException
    ) -> None:
        """Delete a patient whose billing account could not be opened."""

        try:
            await self._repository.delete_patient(patient.id)
        except Exception as exc:
            logger.error(
                "patient_compensation_failed",
                patient_id=str(patient.id),
                billing_error=repr(cause),
                error=str(exc),
            )
            return
        logger.warning(
            "patient_registration_rolled_back",
            patient_id=str(patient.id),
            error=repr(cause),
        )

    async def update_patient(
        self, patient_id: UUID, request: PatientUpdateRequest
    ) -> Patient:
        existing = await self.get_patient(patient_id)

        if await self._repository.exists_by_email_and_id_not(request.email, patient_id):
            raise EmailAlreadyExistsError(request.email)

        updated = existing.model_copy(
            update={
                "name": request.name,
                "email": request.email,
                "address": request.address,
                "date_of_birth": request.date_of_birth,
            }
        )
        # model_copy skips validation; re-validate the merged record.
        updated = Patient.model_validate(updated.model_dump())
        try:
            stored = await self._repository.update_patient(updated)
        except ConstraintViolationError as exc:
            raise EmailAlreadyExistsError(request.email) from exc
        if stored is None:
            raise PatientNotFoundError(patient_id)

        logger.info("patient_updated", patient_id=str(patient_id))
        return stored

    async def delete_patient(self, patient_id: UUID) -> None:
        if not await self._repository.delete_patient(patient_id):
            raise PatientNotFoundError(patient_id)
        logger.info("patient_deleted", patient_id=str(patient_id))


__all__ = ["BillingAccountOpener", "PatientService"]
