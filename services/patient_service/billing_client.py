"""gRPC client used by the patient service to open billing accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import grpc

from shared.observability.logger import get_logger, get_request_id
from shared.proto.billing import BillingRequest, BillingServiceStub
from shared.resilience import RetryPolicy, call_async_with_retry

logger = get_logger(__name__)

REQUEST_ID_METADATA_KEY = "x-request-id"

_RETRYABLE_CODES = frozenset(
    {grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED}
)


class BillingServiceError(RuntimeError):
    """Raised when the billing service does not acknowledge a request."""

    def __init__(self, message: str, *, code: grpc.StatusCode | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(slots=True, frozen=True)
class BillingAccount:
    """Acknowledgment returned by ``CreateBillingAccount``."""

    account_id: str
    status: str


def is_retryable_rpc_error(exc: BaseException) -> bool:
    """Return ``True`` for transient gRPC failures worth another attempt."""

    return isinstance(exc, grpc.aio.AioRpcError) and exc.code() in _RETRYABLE_CODES


class BillingServiceClient:
    """Thin wrapper around the billing stub adding deadlines and retries."""

    def __init__(
        self,
        channel: grpc.aio.Channel,
        *,
        timeout: float = 5.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._channel = channel
        self._stub = BillingServiceStub(channel)
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy(
            should_retry=is_retryable_rpc_error
        )

    @classmethod
    def connect(
        cls,
        address: str,
        *,
        timeout: float = 5.0,
        retry_policy: RetryPolicy | None = None,
    ) -> "BillingServiceClient":
        """Create a client over a new insecure channel to ``address``."""

        return cls(
            grpc.aio.insecure_channel(address),
            timeout=timeout,
            retry_policy=retry_policy,
        )

    async def _call(self, request: Any) -> Any:
        metadata: tuple[tuple[str, str], ...] = ()
        request_id = get_request_id()
        if request_id:
            metadata = ((REQUEST_ID_METADATA_KEY, request_id),)
        return await self._stub.CreateBillingAccount(
            request, timeout=self._timeout, metadata=metadata
        )

    async def create_billing_account(
        self, patient_id: UUID | str, name: str, email: str
    ) -> BillingAccount:
        """Ask the billing service to open an account for a patient."""

        request = BillingRequest(patientId=str(patient_id), name=name, email=email)
        try:
            response = await call_async_with_retry(
                self._call, request, policy=self._retry_policy
            )
        except grpc.aio.AioRpcError as exc:
            logger.warning(
                "billing_request_failed",
                patient_id=str(patient_id),
                code=exc.code().name,
                error=exc.details(),
            )
            raise BillingServiceError(
                f"Billing request failed with status {exc.code().name}",
                code=exc.code(),
            ) from exc

        account = BillingAccount(account_id=response.accountId, status=response.status)
        logger.info(
            "billing_account_created",
            patient_id=str(patient_id),
            account_id=account.account_id,
            status=account.status,
        )
        return account

    async def close(self) -> None:
        """Close the underlying channel."""

        await self._channel.close()


__all__ = [
    "BillingAccount",
    "BillingServiceClient",
    "BillingServiceError",
    "is_retryable_rpc_error",
]
