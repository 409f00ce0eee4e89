"""Starlette middleware binding request ids and logging request latency."""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .logger import generate_request_id, get_logger, request_context

__all__ = ["CorrelationIdMiddleware", "RequestTimingMiddleware"]

_MAX_REQUEST_ID_LENGTH = 128

CallNext = Callable[[Request], Awaitable[Response]]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Accept or mint a request id and echo it back on the response."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        header_name: str = "X-Request-ID",
        fallback_headers: tuple[str, ...] = ("X-Correlation-ID",),
    ) -> None:
        super().__init__(app)
        self.header_name = header_name
        self._candidates = (header_name, *fallback_headers)

    def _incoming_request_id(self, request: Request) -> str | None:
        for header in self._candidates:
            value = (request.headers.get(header) or "").strip()
            if value:
                return value[:_MAX_REQUEST_ID_LENGTH]
        return None

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = self._incoming_request_id(request) or generate_request_id()
        request.state.request_id = request_id

        with request_context(request_id=request_id):
            response = await call_next(request)

        response.headers.setdefault(self.header_name, request_id)
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Emit one ``http_request_completed`` event per request."""

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Response-Time") -> None:
        super().__init__(app)
        self._header_name = header_name
        self._logger = get_logger("http")

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.perf_counter()
        log = self._logger.bind(
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception:
            log.bind(duration_ms=(time.perf_counter() - start) * 1000.0).exception(
                "http_request_failed"
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        if self._header_name:
            response.headers[self._header_name] = f"{duration_ms / 1000.0:.6f}s"
        log.bind(status_code=response.status_code, duration_ms=duration_ms).info(
            "http_request_completed"
        )
        return response
