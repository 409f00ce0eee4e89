"""gRPC server acknowledging ``CreateBillingAccount`` requests."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable

import grpc

from shared.observability.logger import (
    configure_logging,
    generate_request_id,
    get_logger,
    request_context,
)
from shared.proto.billing import (
    BillingResponse,
    BillingServiceServicer,
    add_billing_servicer_to_server,
)

from .config import BillingServiceSettings, get_settings

SERVICE_NAME = "billing_service"

# Placeholder acknowledgment. No account is persisted and every request
# receives the same identifier.
PLACEHOLDER_ACCOUNT_ID = "12345"
PLACEHOLDER_STATUS = "OK"

REQUEST_ID_METADATA_KEY = "x-request-id"

configure_logging(service_name=SERVICE_NAME)

logger = get_logger(__name__)


class BillingGrpcService(BillingServiceServicer):
    """Acknowledges billing account requests with a fixed response."""

    async def CreateBillingAccount(  # noqa: N802 - RPC method name
        self, request: Any, context: grpc.aio.ServicerContext
    ) -> Any:
        logger.info(
            "billing_request_received",
            patient_id=request.patientId,
            name=request.name,
            email=request.email,
        )
        return BillingResponse(
            accountId=PLACEHOLDER_ACCOUNT_ID, status=PLACEHOLDER_STATUS
        )


def _metadata_value(metadata: Any, key: str) -> str | None:
    for item_key, value in metadata or ():
        if item_key.lower() == key:
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            value = value.strip()
            return value[:128] or None
    return None


class RequestContextInterceptor(grpc.aio.ServerInterceptor):
    """Bind a request id to the logging context for each unary RPC."""

    def __init__(self) -> None:
        self._logger = get_logger("grpc")

    async def intercept_service(
        self,
        continuation: Callable[[grpc.HandlerCallDetails], Awaitable[grpc.RpcMethodHandler]],
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        handler = await continuation(handler_call_details)
        if handler is None or handler.unary_unary is None:
            return handler

        method = handler_call_details.method
        request_id = (
            _metadata_value(
                handler_call_details.invocation_metadata, REQUEST_ID_METADATA_KEY
            )
            or generate_request_id()
        )
        inner = handler.unary_unary
        log = self._logger

        async def _handle(request: Any, context: grpc.aio.ServicerContext) -> Any:
            start = time.perf_counter()
            with request_context(request_id=request_id, rpc_method=method):
                try:
                    response = await inner(request, context)
                except Exception:
                    log.bind(
                        method=method,
                        duration_ms=(time.perf_counter() - start) * 1000.0,
                    ).exception("grpc_request_failed")
                    raise
                log.bind(
                    method=method,
                    duration_ms=(time.perf_counter() - start) * 1000.0,
                ).info("grpc_request_completed")
                return response

        return grpc.unary_unary_rpc_method_handler(
            _handle,
            request_deserializer=handler.request_deserializer,
            response_serializer=handler.response_serializer,
        )


def create_server(
    settings: BillingServiceSettings | None = None,
    *,
    address: str | None = None,
) -> tuple[grpc.aio.Server, int]:
    """Build (but do not start) the billing server.

    Returns the server together with the bound port, which differs from the
    configured one when port ``0`` asks for an ephemeral port.
    """

    resolved = settings or get_settings()
    server = grpc.aio.server(interceptors=(RequestContextInterceptor(),))
    add_billing_servicer_to_server(BillingGrpcService(), server)
    port = server.add_insecure_port(address or resolved.bind_address)
    return server, port


async def serve(settings: BillingServiceSettings | None = None) -> None:
    """Run the billing server until it is terminated."""

    resolved = settings or get_settings()
    configure_logging(service_name=SERVICE_NAME, level=resolved.log_level)
    server, port = create_server(resolved)
    await server.start()
    logger.info("billing_server_started", host=resolved.host, port=port)
    try:
        await server.wait_for_termination()
    finally:
        await server.stop(resolved.shutdown_grace)
        logger.info("billing_server_stopped")


__all__ = [
    "BillingGrpcService",
    "PLACEHOLDER_ACCOUNT_ID",
    "PLACEHOLDER_STATUS",
    "RequestContextInterceptor",
    "create_server",
    "serve",
]
