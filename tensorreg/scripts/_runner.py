# tensorreg/scripts/_runner.py
from __future__ import annotations

import asyncio
import signal
from typing import Awaitable, Callable

from loguru import logger

from tensorreg.errors import Cancelled, TensorRegError

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CANCELLED = 130


def install_shutdown_handlers(shutdown: asyncio.Event) -> None:
    """SIGINT/SIGTERM set *shutdown*; the loop unwinds at its next await."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except (NotImplementedError, RuntimeError):
            # not supported on this platform / not the main thread
            logger.debug(f"signal handler for {sig.name} unavailable")


async def run_until_done(job: Callable[[asyncio.Event], Awaitable[object]]) -> int:
    """Run *job(shutdown)* and map its outcome onto a process exit code."""
    shutdown = asyncio.Event()
    install_shutdown_handlers(shutdown)
    try:
        await job(shutdown)
    except Cancelled:
        logger.warning("✗ cancelled")
        return EXIT_CANCELLED
    except TensorRegError as e:
        logger.error(f"✗ {type(e).__name__}: {e}")
        return EXIT_FATAL
    return EXIT_OK
