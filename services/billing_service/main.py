"""Entrypoint for the billing gRPC service."""

from __future__ import annotations

import asyncio

from .app import serve

__all__ = ["main"]


def main() -> None:
    """Run the billing gRPC server in the foreground."""

    asyncio.run(serve())


if __name__ == "__main__":  # pragma: no cover
    main()
