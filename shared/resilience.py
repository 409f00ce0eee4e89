"""Tenacity-backed retry helpers for outbound service calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shared.observability.logger import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for :func:`call_async_with_retry`.

    ``should_retry`` decides per exception whether another attempt is made;
    anything it rejects propagates immediately.
    """

    attempts: int = 3
    initial_delay: float = 0.2
    max_delay: float = 2.0
    backoff_multiplier: float = 2.0
    should_retry: Callable[[BaseException], bool] = _always


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(
        "retrying_call",
        attempt=retry_state.attempt_number,
        error=str(error) if error is not None else None,
    )


async def call_async_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)`` under ``policy``, re-raising the last error."""

    resolved = policy or RetryPolicy()
    retrying = AsyncRetrying(
        retry=retry_if_exception(resolved.should_retry),
        stop=stop_after_attempt(max(resolved.attempts, 1)),
        wait=wait_exponential(
            multiplier=resolved.initial_delay,
            min=resolved.initial_delay,
            max=resolved.max_delay,
            exp_base=resolved.backoff_multiplier,
        ),
        before_sleep=_log_retry,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await func(*args, **kwargs)

    raise RuntimeError("Retry loop terminated without executing the function.")


__all__ = ["RetryPolicy", "call_async_with_retry"]
