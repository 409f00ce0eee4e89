"""HTTP helpers and exception definitions used across services."""

from .errors import (
    BillingUnavailableError,
    EmailAlreadyExistsError,
    PatientNotFoundError,
    ProblemDetails,
    ProblemDetailsException,
    StorageUnavailableError,
    register_exception_handlers,
)

__all__ = [
    "BillingUnavailableError",
    "EmailAlreadyExistsError",
    "PatientNotFoundError",
    "ProblemDetails",
    "ProblemDetailsException",
    "StorageUnavailableError",
    "register_exception_handlers",
]
