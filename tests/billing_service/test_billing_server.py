from __future__ import annotations

import sys
from pathlib import Path
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from uuid import uuid4

import grpc
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import services.billing_service.app as billing_app  # noqa: E402
from services.billing_service.app import (  # noqa: E402
    PLACEHOLDER_ACCOUNT_ID,
    PLACEHOLDER_STATUS,
    BillingGrpcService,
    RequestContextInterceptor,
    create_server,
)
from services.patient_service.billing_client import (  # noqa: E402
    BillingServiceClient,
    BillingServiceError,
    is_retryable_rpc_error,
)
from shared.observability.logger import get_request_id, request_context  # noqa: E402
from shared.proto.billing import (  # noqa: E402
    BillingRequest,
    BillingServiceStub,
    add_billing_servicer_to_server,
)
from shared.resilience import RetryPolicy  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def billing_address() -> AsyncIterator[str]:
    server, port = create_server(address="127.0.0.1:0")
    await server.start()
    try:
        yield f"127.0.0.1:{port}"
    finally:
        await server.stop(None)


class _RequestIdRecordingService(BillingGrpcService):
    def __init__(self) -> None:
        self.request_ids: list[str | None] = []

    async def CreateBillingAccount(self, request: Any, context: Any) -> Any:  # noqa: N802
        self.request_ids.append(get_request_id())
        return await super().CreateBillingAccount(request, context)


class _RejectingService(BillingGrpcService):
    def __init__(self) -> None:
        self.calls = 0

    async def CreateBillingAccount(self, request: Any, context: Any) -> Any:  # noqa: N802
        self.calls += 1
        await context.abort(grpc.StatusCode.INVALID_ARGUMENT, "bad patient")


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    def info(self, event: str, **fields: object) -> None:
        self.events.append((event, fields))


@asynccontextmanager
async def _serve(servicer: BillingGrpcService) -> AsyncIterator[str]:
    server = grpc.aio.server(interceptors=(RequestContextInterceptor(),))
    add_billing_servicer_to_server(servicer, server)
    port = server.add_insecure_port("127.0.0.1:0")
    await server.start()
    try:
        yield f"127.0.0.1:{port}"
    finally:
        await server.stop(None)


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "request_fields",
    [
        {"patientId": str(uuid4()), "name": "Ada", "email": "a@x.com"},
        {"patientId": "", "name": "", "email": ""},
        {},
    ],
)
async def test_create_billing_account_ignores_input(
    billing_address: str, request_fields: dict[str, str]
) -> None:
    async with grpc.aio.insecure_channel(billing_address) as channel:
        stub = BillingServiceStub(channel)
        response = await stub.CreateBillingAccount(
            BillingRequest(**request_fields), timeout=5
        )

    assert response.accountId == PLACEHOLDER_ACCOUNT_ID == "12345"
    assert response.status == PLACEHOLDER_STATUS == "OK"


@pytest.mark.anyio("asyncio")
async def test_client_returns_account_and_propagates_request_id(
    billing_address: str,
) -> None:
    client = BillingServiceClient.connect(billing_address, timeout=5)
    try:
        with request_context(request_id="req-42"):
            account = await client.create_billing_account(uuid4(), "Ada", "a@x.com")
    finally:
        await client.close()

    assert account.account_id == "12345"
    assert account.status == "OK"


@pytest.mark.anyio("asyncio")
async def test_server_sees_the_request_id_sent_by_the_client() -> None:
    servicer = _RequestIdRecordingService()
    async with _serve(servicer) as address:
        client = BillingServiceClient.connect(address, timeout=5)
        try:
            with request_context(request_id="req-42"):
                await client.create_billing_account(uuid4(), "Ada", "a@x.com")
        finally:
            await client.close()

    assert servicer.request_ids == ["req-42"]


@pytest.mark.anyio("asyncio")
async def test_server_generates_a_request_id_when_none_is_sent() -> None:
    servicer = _RequestIdRecordingService()
    async with _serve(servicer) as address:
        async with grpc.aio.insecure_channel(address) as channel:
            await BillingServiceStub(channel).CreateBillingAccount(
                BillingRequest(), timeout=5
            )

    assert len(servicer.request_ids) == 1
    assert servicer.request_ids[0]


@pytest.mark.anyio("asyncio")
async def test_invalid_argument_is_not_retried() -> None:
    servicer = _RejectingService()
    async with _serve(servicer) as address:
        client = BillingServiceClient.connect(
            address,
            timeout=5,
            retry_policy=RetryPolicy(
                attempts=3,
                initial_delay=0.01,
                max_delay=0.02,
                should_retry=is_retryable_rpc_error,
            ),
        )
        try:
            with pytest.raises(BillingServiceError) as excinfo:
                await client.create_billing_account(uuid4(), "Ada", "a@x.com")
        finally:
            await client.close()

    assert excinfo.value.code == grpc.StatusCode.INVALID_ARGUMENT
    assert servicer.calls == 1


@pytest.mark.anyio("asyncio")
async def test_received_request_is_logged(monkeypatch: pytest.MonkeyPatch) -> None:
    recorder = _RecordingLogger()
    monkeypatch.setattr(billing_app, "logger", recorder)
    patient_id = str(uuid4())

    response = await BillingGrpcService().CreateBillingAccount(
        BillingRequest(patientId=patient_id, name="Ada", email="a@x.com"), None
    )

    assert response.accountId == "12345"
    assert recorder.events == [
        (
            "billing_request_received",
            {"patient_id": patient_id, "name": "Ada", "email": "a@x.com"},
        )
    ]


@pytest.mark.anyio("asyncio")
async def test_client_raises_after_retries_when_unreachable() -> None:
    client = BillingServiceClient.connect(
        "127.0.0.1:1",
        timeout=1,
        retry_policy=RetryPolicy(
            attempts=2,
            initial_delay=0.01,
            max_delay=0.02,
            should_retry=is_retryable_rpc_error,
        ),
    )
    try:
        with pytest.raises(BillingServiceError) as excinfo:
            await client.create_billing_account(uuid4(), "Ada", "a@x.com")
    finally:
        await client.close()

    assert excinfo.value.code in {
        grpc.StatusCode.UNAVAILABLE,
        grpc.StatusCode.DEADLINE_EXCEEDED,
    }


def test_only_transient_errors_are_retried() -> None:
    assert is_retryable_rpc_error(ValueError("boom")) is False
