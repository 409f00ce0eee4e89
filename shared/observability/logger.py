"""Structured logging for the patient management services.

structlog produces the event dictionaries, loguru owns the sink. Standard
``logging`` records (uvicorn, grpc, sqlalchemy) are routed through loguru so
every line carries the same ``service`` and ``request_id`` columns.

Patient contact details passed as event fields (``email``, ``name``,
``address``, ``date_of_birth``) are masked before rendering.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from types import FrameType
from typing import Any, Iterator, Mapping, MutableMapping

import structlog
from loguru import logger as loguru_logger

__all__ = [
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_request_id",
    "mask_email",
    "redact_contact_details",
    "request_context",
]

_REQUEST_ID: ContextVar[str | None] = ContextVar("request_id", default=None)
_CONFIGURED: bool = False
_SERVICE_NAME: str | None = None

CONTACT_FIELDS = frozenset({"email", "name", "address", "date_of_birth"})
_MASK = "***"


def _format_record(record: Mapping[str, Any]) -> str:
    extra = record.get("extra") or {}
    service = extra.get("service", "-")
    request_id = extra.get("request_id") or "-"
    message = str(record.get("message", ""))
    # loguru runs the returned value through ``str.format`` again.
    message = message.replace("{", "{{").replace("}", "}}")
    return (
        f"{record['time'].isoformat()} | {record['level'].name:<8} | "
        f"{service} | {request_id} | {message}\n"
    )


def _resolve_level(level: str | int) -> tuple[int, str]:
    """Return ``level`` as a ``(number, name)`` pair understood by both loggers."""

    if isinstance(level, int):
        numeric = level
    else:
        numeric = logging.getLevelName(level.strip().upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
    name = logging.getLevelName(numeric)
    return numeric, name if isinstance(name, str) else "INFO"


def mask_email(value: str) -> str:
    """Keep the first character of the local part and the domain."""

    local, sep, domain = value.partition("@")
    if not sep or not local:
        return _MASK
    return f"{local[0]}{_MASK}@{domain}"


def redact_contact_details(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking patient contact fields."""

    for key in CONTACT_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if value is None or value == "":
            continue
        if key == "email" and isinstance(value, str):
            event_dict[key] = mask_email(value)
        else:
            event_dict[key] = _MASK
    return event_dict


def get_request_id() -> str | None:
    """Return the request identifier bound to the current context, if any."""

    return _REQUEST_ID.get()


def generate_request_id() -> str:
    """Return a new opaque request identifier."""

    return uuid.uuid4().hex


class _InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        level: str | int
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        bound = loguru_logger.bind(logger=record.name)
        request_id = get_request_id()
        if request_id:
            bound = bound.bind(request_id=request_id)
        bound.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(
    *, service_name: str | None = None, level: str | int = "INFO"
) -> None:
    """Install the loguru sink and structlog pipeline once per process.

    Repeated calls only rebind ``service_name``, so every service module can
    call this at import time.
    """

    global _CONFIGURED, _SERVICE_NAME

    numeric_level, level_name = _resolve_level(level)

    if not _CONFIGURED:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stdout,
            level=level_name,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=_format_record,
        )
        logging.basicConfig(
            handlers=[_InterceptHandler()], level=numeric_level, force=True
        )
        logging.captureWarnings(True)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                redact_contact_details,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _CONFIGURED = True

    if service_name:
        _SERVICE_NAME = service_name
        loguru_logger.configure(extra={"service": service_name})
        structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named."""

    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


@contextmanager
def request_context(request_id: str | None = None, **extra: Any) -> Iterator[str]:
    """Bind a request identifier (and ``extra``) for the lifetime of the block.

    Values that were already bound in the structlog context are restored on
    exit, so nested contexts do not clobber the outer request.
    """

    extra.pop("request_id", None)
    rid = request_id or generate_request_id()
    token = _REQUEST_ID.set(rid)

    values: dict[str, Any] = {"correlation_id": rid, **extra}
    if _SERVICE_NAME and "service" not in values:
        values["service"] = _SERVICE_NAME
    keys = ["request_id", *values]

    contextvars = structlog.contextvars
    previous = contextvars.get_contextvars()
    contextvars.bind_contextvars(request_id=rid, **values)

    try:
        with loguru_logger.contextualize(request_id=rid, **extra):
            yield rid
    finally:
        contextvars.unbind_contextvars(*keys)
        restore = {key: previous[key] for key in keys if key in previous}
        if restore:
            contextvars.bind_contextvars(**restore)
        _REQUEST_ID.reset(token)
