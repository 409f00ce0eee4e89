"""RFC 7807 problem details and the domain errors raised by the services."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Mapping, cast

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.observability.logger import get_logger

__all__ = [
    "BillingUnavailableError",
    "EmailAlreadyExistsError",
    "PatientNotFoundError",
    "ProblemDetails",
    "ProblemDetailsException",
    "StorageUnavailableError",
    "register_exception_handlers",
]

logger = get_logger(__name__)

PROBLEM_BASE_URI = "https://patient-management.example/problems"
_PROBLEM_FIELDS = {"type", "title", "status", "detail", "instance"}


class ProblemDetails(BaseModel):
    """Representation of an RFC 7807 problem details payload."""

    type: str = Field(
        default="about:blank", description="URI identifying the error type"
    )
    title: str = Field(
        default="An error occurred", description="Short human-readable summary"
    )
    status: int = Field(default=status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail: str | None = Field(
        default=None, description="Detailed description of the error"
    )
    instance: str | None = Field(
        default=None, description="URI identifying the specific occurrence"
    )
    errors: list[Any] | None = Field(
        default=None, description="Detailed validation errors when applicable"
    )

    model_config = ConfigDict(extra="allow")


class ProblemDetailsException(RuntimeError):
    """Base exception carrying structured problem details metadata."""

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Service Error"
    default_type = "about:blank"

    def __init__(
        self,
        detail: str | None = None,
        *,
        status_code: int | None = None,
        title: str | None = None,
        type_uri: str | None = None,
        instance: str | None = None,
        extensions: Mapping[str, Any] | None = None,
    ) -> None:
        message = detail or title or self.default_title
        super().__init__(message)
        self.detail = detail or message
        self.status_code = status_code or self.default_status_code
        self.title = title or self.default_title
        self.problem_type = type_uri or self.default_type
        self.instance = instance
        self.extensions = dict(extensions or {})

    def to_problem_details(self, *, instance: str | None = None) -> ProblemDetails:
        """Return a :class:`ProblemDetails` representation of the exception."""

        return ProblemDetails(
            type=self.problem_type,
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=instance or self.instance,
            **self.extensions,
        )


class PatientNotFoundError(ProblemDetailsException):
    """Raised when no patient exists for the requested identifier."""

    default_status_code = status.HTTP_404_NOT_FOUND
    default_title = "Patient Not Found"
    default_type = f"{PROBLEM_BASE_URI}/patient-not-found"

    def __init__(self, patient_id: Any) -> None:
        self.patient_id = str(patient_id)
        super().__init__(
            f"Patient '{self.patient_id}' was not found.",
            extensions={"patientId": self.patient_id},
        )


class EmailAlreadyExistsError(ProblemDetailsException):
    """Raised when another patient already uses the submitted e-mail address."""

    default_status_code = status.HTTP_409_CONFLICT
    default_title = "Email Already Exists"
    default_type = f"{PROBLEM_BASE_URI}/email-already-exists"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(
            f"A patient with email '{email}' already exists.",
            extensions={"email": email},
        )


class BillingUnavailableError(ProblemDetailsException):
    """Raised when the billing service cannot open an account for a patient."""

    default_status_code = status.HTTP_502_BAD_GATEWAY
    default_title = "Billing Service Unavailable"
    default_type = f"{PROBLEM_BASE_URI}/billing-unavailable"

    def __init__(self, *, reason: str | None = None) -> None:
        self.reason = reason
        extensions = {"reason": reason} if reason else None
        super().__init__(
            "The billing service could not create a billing account.",
            extensions=extensions,
        )


class StorageUnavailableError(ProblemDetailsException):
    """Raised when the patient store cannot be reached."""

    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_title = "Patient Store Unavailable"
    default_type = f"{PROBLEM_BASE_URI}/storage-unavailable"


def _problem_response(problem: ProblemDetails) -> JSONResponse:
    payload = problem.model_dump(mode="json", exclude_none=True)
    return JSONResponse(
        payload,
        status_code=payload.get("status", status.HTTP_500_INTERNAL_SERVER_ERROR),
        media_type="application/problem+json",
    )


def _status_title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:  # pragma: no cover - non-standard status
        return "HTTP Error"


def _normalize_detail(detail: Any) -> tuple[str | None, dict[str, Any]]:
    if isinstance(detail, Mapping):
        value = detail.get("detail") or detail.get("message")
        extras = {k: v for k, v in detail.items() if k not in _PROBLEM_FIELDS}
        return (str(value) if value is not None else None), extras
    if isinstance(detail, list):
        return None, {"errors": detail}
    if detail is None:
        return None, {}
    return str(detail), {}


def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    detail, extras = _normalize_detail(http_exc.detail)
    problem = ProblemDetails(
        title=_status_title(http_exc.status_code),
        status=http_exc.status_code,
        detail=detail,
        instance=str(request.url),
        **extras,
    )
    return _problem_response(problem)


def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_error = cast(RequestValidationError, exc)
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE_URI}/request-validation",
        title="Request Validation Failed",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail="One or more request fields failed validation.",
        instance=str(request.url),
        errors=jsonable_encoder(validation_error.errors()),
    )
    return _problem_response(problem)


def _problem_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    problem_exc = cast(ProblemDetailsException, exc)
    if problem_exc.status_code >= 500:
        logger.warning(
            "problem_response",
            status_code=problem_exc.status_code,
            title=problem_exc.title,
            path=str(request.url),
        )
    return _problem_response(problem_exc.to_problem_details(instance=str(request.url)))


def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", error=str(exc), path=str(request.url))
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE_URI}/internal-server-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred while processing the request.",
        instance=str(request.url),
    )
    return _problem_response(problem)


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers that render every error as problem details."""

    app.add_exception_handler(ProblemDetailsException, _problem_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
