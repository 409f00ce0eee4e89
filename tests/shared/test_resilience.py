from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from shared.resilience import RetryPolicy, call_async_with_retry  # noqa: E402


class _Transient(Exception):
    pass


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


_FAST = dict(initial_delay=0.001, max_delay=0.002)


@pytest.mark.anyio("asyncio")
async def test_retries_until_success() -> None:
    attempts: list[int] = []

    async def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise _Transient()
        return "done"

    result = await call_async_with_retry(flaky, policy=RetryPolicy(attempts=3, **_FAST))

    assert result == "done"
    assert len(attempts) == 3


@pytest.mark.anyio("asyncio")
async def test_non_retryable_errors_propagate_immediately() -> None:
    attempts: list[int] = []

    async def broken() -> None:
        attempts.append(1)
        raise ValueError("permanent")

    policy = RetryPolicy(
        attempts=5,
        should_retry=lambda exc: isinstance(exc, _Transient),
        **_FAST,
    )
    with pytest.raises(ValueError):
        await call_async_with_retry(broken, policy=policy)

    assert len(attempts) == 1


@pytest.mark.anyio("asyncio")
async def test_last_error_is_reraised_when_attempts_run_out() -> None:
    async def always_fails() -> None:
        raise _Transient("still down")

    with pytest.raises(_Transient, match="still down"):
        await call_async_with_retry(
            always_fails, policy=RetryPolicy(attempts=2, **_FAST)
        )
