"""FastAPI application exposing patient registration and profile management."""

from __future__ import annotations

import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from shared.http.errors import StorageUnavailableError, register_exception_handlers
from shared.models.patient import (
    PatientCreateRequest,
    PatientResponse,
    PatientUpdateRequest,
)
from shared.observability.logger import configure_logging, get_logger
from shared.observability.middleware import (
    CorrelationIdMiddleware,
    RequestTimingMiddleware,
)
from shared.resilience import RetryPolicy

from .billing_client import BillingServiceClient, is_retryable_rpc_error
from .config import PatientServiceSettings, get_settings
from .repositories import (
    InMemoryPatientRepository,
    PatientRepository,
    SqlPatientRepository,
    StorageError,
)
from .service import PatientService

SERVICE_NAME = "patient_service"

configure_logging(service_name=SERVICE_NAME)

app = FastAPI(title="Patient Service")
router = APIRouter(prefix="/patients", tags=["patients"])

app.add_middleware(RequestTimingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)

logger = get_logger(__name__)

_repository: PatientRepository | None = None
_billing_client: BillingServiceClient | None = None
_repository_lock = asyncio.Lock()


async def get_repository(
    settings: PatientServiceSettings = Depends(get_settings),
) -> PatientRepository:
    """Return the shared patient store, creating it on first use."""

    global _repository
    if _repository is not None:
        return _repository
    async with _repository_lock:
        if _repository is None:
            if settings.database_url:
                sql_repository = SqlPatientRepository(settings.database_url)
                if settings.create_schema:
                    await sql_repository.create_schema()
                _repository = sql_repository
            else:
                logger.info("patient_store_in_memory")
                _repository = InMemoryPatientRepository()
    return _repository


async def get_billing_client(
    settings: PatientServiceSettings = Depends(get_settings),
) -> BillingServiceClient | None:
    """Return the shared billing client, or ``None`` when billing is disabled."""

    global _billing_client
    if not settings.billing_enabled:
        return None
    if _billing_client is None:
        _billing_client = BillingServiceClient.connect(
            settings.billing_address,
            timeout=settings.billing_timeout,
            retry_policy=RetryPolicy(
                attempts=settings.billing_retry_attempts,
                should_retry=is_retryable_rpc_error,
            ),
        )
    return _billing_client


async def get_patient_service(
    repository: PatientRepository = Depends(get_repository),
    billing: BillingServiceClient | None = Depends(get_billing_client),
) -> PatientService:
    return PatientService(repository, billing)


@app.on_event("shutdown")
async def shutdown_resources() -> None:  # pragma: no cover - app lifecycle management
    """Close the billing channel and database engine."""

    global _repository, _billing_client
    if _billing_client is not None:
        await _billing_client.close()
        _billing_client = None
    if isinstance(_repository, SqlPatientRepository):
        await _repository.dispose()
    _repository = None


def _storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("patient_store_unavailable", error=str(exc), path=str(request.url))
    problem = StorageUnavailableError(
        "The patient store is temporarily unavailable."
    ).to_problem_details(instance=str(request.url))
    return JSONResponse(
        problem.model_dump(mode="json", exclude_none=True),
        status_code=problem.status,
        media_type="application/problem+json",
    )


app.add_exception_handler(StorageError, _storage_error_handler)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Return a simple health payload for orchestration checks."""

    return {"status": "ok", "service": SERVICE_NAME}


@router.get("", response_model=list[PatientResponse])
async def list_patients(
    service: PatientService = Depends(get_patient_service),
) -> list[PatientResponse]:
    patients = await service.list_patients()
    return [PatientResponse.from_patient(patient) for patient in patients]


@router.get("/{patient_id}", response_model=PatientResponse)
async def read_patient(
    patient_id: UUID, service: PatientService = Depends(get_patient_service)
) -> PatientResponse:
    return PatientResponse.from_patient(await service.get_patient(patient_id))


@router.post(
    "", response_model=PatientResponse, status_code=status.HTTP_201_CREATED
)
async def create_patient(
    payload: PatientCreateRequest,
    service: PatientService = Depends(get_patient_service),
) -> PatientResponse:
    """Register a patient and open a billing account for them."""

    return PatientResponse.from_patient(await service.create_patient(payload))


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: UUID,
    payload: PatientUpdateRequest,
    service: PatientService = Depends(get_patient_service),
) -> PatientResponse:
    """Edit a patient profile; the registration date is left untouched."""

    return PatientResponse.from_patient(
        await service.update_patient(patient_id, payload)
    )


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(
    patient_id: UUID, service: PatientService = Depends(get_patient_service)
) -> Response:
    await service.delete_patient(patient_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


app.include_router(router)


def get_app() -> FastAPI:
    """Return the configured FastAPI application."""

    return app


__all__ = [
    "app",
    "get_app",
    "get_billing_client",
    "get_patient_service",
    "get_repository",
    "health",
]
