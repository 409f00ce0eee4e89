from __future__ import annotations

import asyncio
import sys
from datetime import date
from pathlib import Path
from uuid import UUID, uuid4

import grpc
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.patient_service.billing_client import (  # noqa: E402
    BillingAccount,
    BillingServiceError,
)
from services.patient_service.repositories import (  # noqa: E402
    InMemoryPatientRepository,
    StorageError,
)
from services.patient_service.service import PatientService  # noqa: E402
from shared.http.errors import (  # noqa: E402
    BillingUnavailableError,
    EmailAlreadyExistsError,
    PatientNotFoundError,
)
from shared.models.patient import PatientCreateRequest, PatientUpdateRequest  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _RecordingBilling:
    def __init__(self, error: BaseException | None = None) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self._error = error

    async def create_billing_account(
        self, patient_id: UUID | str, name: str, email: str
    ) -> BillingAccount:
        self.calls.append((str(patient_id), name, email))
        if self._error is not None:
            raise self._error
        return BillingAccount(account_id="12345", status="OK")


def _create_request(email: str = "a@x.com") -> PatientCreateRequest:
    return PatientCreateRequest(
        name="Ada Lovelace",
        email=email,
        address="12 Analytical Row",
        date_of_birth=date(1815, 12, 10),
        registered_date=date(2024, 1, 1),
    )


def _update_request(email: str = "a@x.com", **overrides: object) -> PatientUpdateRequest:
    fields: dict[str, object] = {
        "name": "Ada King",
        "email": email,
        "address": "1 New Street",
        "date_of_birth": date(1815, 12, 10),
    }
    fields.update(overrides)
    return PatientUpdateRequest(**fields)


@pytest.mark.anyio("asyncio")
async def test_create_patient_opens_billing_account() -> None:
    billing = _RecordingBilling()
    service = PatientService(InMemoryPatientRepository(), billing)

    patient = await service.create_patient(_create_request())

    assert billing.calls == [(str(patient.id), "Ada Lovelace", "a@x.com")]
    assert await service.get_patient(patient.id) == patient


@pytest.mark.anyio("asyncio")
async def test_create_patient_with_taken_email_skips_billing() -> None:
    billing = _RecordingBilling()
    service = PatientService(InMemoryPatientRepository(), billing)
    await service.create_patient(_create_request())

    with pytest.raises(EmailAlreadyExistsError):
        await service.create_patient(_create_request(email="A@x.com"))

    assert len(billing.calls) == 1


@pytest.mark.anyio("asyncio")
async def test_billing_failure_removes_the_new_patient() -> None:
    repository = InMemoryPatientRepository()
    billing = _RecordingBilling(
        BillingServiceError("down", code=grpc.StatusCode.UNAVAILABLE)
    )
    service = PatientService(repository, billing)

    with pytest.raises(BillingUnavailableError) as excinfo:
        await service.create_patient(_create_request())

    assert excinfo.value.reason == "UNAVAILABLE"
    assert await repository.list_patients() == []
    assert await repository.exists_by_email("a@x.com") is False


class _DeleteFailsRepository(InMemoryPatientRepository):
    async def delete_patient(self, patient_id: UUID) -> bool:
        raise StorageError("store went away")


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **fields: object) -> None:
        self.events.append(("info", event, fields))

    def warning(self, event: str, **fields: object) -> None:
        self.events.append(("warning", event, fields))

    def error(self, event: str, **fields: object) -> None:
        self.events.append(("error", event, fields))


@pytest.mark.anyio("asyncio")
async def test_unexpected_billing_error_still_removes_the_new_patient() -> None:
    repository = InMemoryPatientRepository()
    service = PatientService(repository, _RecordingBilling(RuntimeError("boom")))

    with pytest.raises(BillingUnavailableError) as excinfo:
        await service.create_patient(_create_request())

    assert excinfo.value.reason == "RuntimeError"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert await repository.list_patients() == []


@pytest.mark.anyio("asyncio")
async def test_failed_cleanup_is_logged_and_billing_error_surfaces(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    import services.patient_service.service as service_module

    recorder = _RecordingLogger()
    monkeypatch.setattr(service_module, "logger", recorder)
    repository = _DeleteFailsRepository()
    billing = _RecordingBilling(
        BillingServiceError("down", code=grpc.StatusCode.UNAVAILABLE)
    )
    service = PatientService(repository, billing)

    with pytest.raises(BillingUnavailableError) as excinfo:
        await service.create_patient(_create_request())

    assert excinfo.value.reason == "UNAVAILABLE"
    errors = [entry for entry in recorder.events if entry[0] == "error"]
    assert len(errors) == 1
    _, event, fields = errors[0]
    assert event == "patient_compensation_failed"
    assert fields["error"] == "store went away"
    assert fields["patient_id"] == billing.calls[0][0]


@pytest.mark.anyio("asyncio")
async def test_cancelled_billing_call_removes_patient_and_propagates() -> None:
    repository = InMemoryPatientRepository()
    service = PatientService(repository, _RecordingBilling(asyncio.CancelledError()))

    with pytest.raises(asyncio.CancelledError):
        await service.create_patient(_create_request())

    assert await repository.list_patients() == []


@pytest.mark.anyio("asyncio")
async def test_create_without_billing_client() -> None:
    service = PatientService(InMemoryPatientRepository())

    patient = await service.create_patient(_create_request())

    assert patient.email == "a@x.com"


@pytest.mark.anyio("asyncio")
async def test_update_keeps_own_email_and_registration_date() -> None:
    service = PatientService(InMemoryPatientRepository())
    patient = await service.create_patient(_create_request())

    updated = await service.update_patient(
        patient.id, _update_request(registered_date=date(2030, 1, 1))
    )

    assert updated.id == patient.id
    assert updated.name == "Ada King"
    assert updated.email == "a@x.com"
    assert updated.registered_date == date(2024, 1, 1)


@pytest.mark.anyio("asyncio")
async def test_update_rejects_email_of_another_patient() -> None:
    service = PatientService(InMemoryPatientRepository())
    await service.create_patient(_create_request(email="a@x.com"))
    second = await service.create_patient(_create_request(email="b@x.com"))

    with pytest.raises(EmailAlreadyExistsError):
        await service.update_patient(second.id, _update_request(email="a@x.com"))


@pytest.mark.anyio("asyncio")
async def test_missing_patient_operations_raise_not_found() -> None:
    service = PatientService(InMemoryPatientRepository())
    missing = uuid4()

    with pytest.raises(PatientNotFoundError):
        await service.get_patient(missing)
    with pytest.raises(PatientNotFoundError):
        await service.update_patient(missing, _update_request())
    with pytest.raises(PatientNotFoundError):
        await service.delete_patient(missing)
