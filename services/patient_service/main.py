"""Entrypoint module for the patient FastAPI service."""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from .app import get_app
from .config import get_settings

app: FastAPI = get_app()

__all__ = ["app", "main"]


def main() -> None:
    """Run the patient service using ``uvicorn``."""

    settings = get_settings()
    uvicorn.run(
        "services.patient_service.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover
    main()
