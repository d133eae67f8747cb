"""
Event loop helper for the CLI.

Usage:
    from provtrack.async_utils import run_sync

    # CLI entry points drive one coroutine on a private loop
    exit_code = run_sync(cmd_watch(args, settings))
"""

import asyncio
from typing import Any, Coroutine, TypeVar

T = TypeVar("T")


def run_sync(coro: Coroutine[Any, Any, T]) -> T:
    """
    Drive coro to completion on a fresh event loop and return its result.

    Async generators are finalized before the loop is closed, so aiohttp
    sessions opened by the coroutine shut down cleanly.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
