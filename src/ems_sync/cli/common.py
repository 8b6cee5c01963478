"""Helpers shared by CLI commands."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable
from typing import TypeVar

from ems_sync.core.sync.engine import SyncEngine

T = TypeVar("T")


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for all commands.

    Args:
        debug: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def build_engine() -> SyncEngine:
    """Engine configured from the layered config. Patched in tests."""
    return SyncEngine.from_config()


def run_async(coro: Awaitable[T]) -> T:
    """Run an engine coroutine from Typer's sync command context."""

    async def _main() -> T:
        return await coro

    return asyncio.run(_main())
