from __future__ import annotations

import sys
from pathlib import Path
from uuid import uuid4

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared.http.errors import (  # noqa: E402
    BillingUnavailableError,
    EmailAlreadyExistsError,
    PatientNotFoundError,
)


def test_patient_not_found_problem_details() -> None:
    patient_id = uuid4()

    problem = PatientNotFoundError(patient_id).to_problem_details(
        instance="http://test/patients"
    )
    payload = problem.model_dump(mode="json", exclude_none=True)

    assert payload["status"] == 404
    assert payload["title"] == "Patient Not Found"
    assert payload["patientId"] == str(patient_id)
    assert payload["instance"] == "http://test/patients"
    assert payload["type"].endswith("/patient-not-found")


def test_email_conflict_carries_email() -> None:
    error = EmailAlreadyExistsError("a@x.com")

    payload = error.to_problem_details().model_dump(exclude_none=True)

    assert error.status_code == 409
    assert payload["email"] == "a@x.com"
    assert "a@x.com" in payload["detail"]


def test_billing_unavailable_reason_is_optional() -> None:
    without_reason = BillingUnavailableError().to_problem_details()
    with_reason = BillingUnavailableError(reason="UNAVAILABLE").to_problem_details()

    assert without_reason.status == 502
    assert "reason" not in without_reason.model_dump(exclude_none=True)
    assert with_reason.model_dump()["reason"] == "UNAVAILABLE"
