# tensorreg/block_time.py
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from tensorreg.config import (
    BASE_BLOCK_TIME,
    BLOCK_POLL_INTERVAL,
    MAX_BLOCK_TIME,
    MAX_WAIT_TIME,
    SAMPLE_SIZE,
)
from tensorreg.errors import ExceededMaxWaitTime
from tensorreg.utils.colors import ColoredLogger as clog


def clamp_block_time(seconds: float) -> float:
    return min(max(seconds, BASE_BLOCK_TIME), MAX_BLOCK_TIME)


async def estimate_block_time(
    client,
    *,
    sample_size: int = SAMPLE_SIZE,
    max_wait: float = MAX_WAIT_TIME,
    poll_interval: float = BLOCK_POLL_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> float:
    """
    Estimate the average inter-block time, in seconds.

    Waits for `sample_size` blocks to be finalized after the current head and
    divides the elapsed wall-clock time by the sample size. The result is
    clamped to [BASE_BLOCK_TIME, MAX_BLOCK_TIME]; landing on either bound is
    logged as a warning since it usually means unusual network conditions.

    Raises:
        ExceededMaxWaitTime: the target block was not finalized within `max_wait`.
        BlockHeaderNotFound: the node returned no header for the finalized head.
    """
    start = clock()
    start_header = await client.latest_finalized_header()
    target = start_header.number + sample_size

    while (await client.latest_finalized_header()).number < target:
        waited = clock() - start
        if waited >= max_wait:
            raise ExceededMaxWaitTime(waited)
        await sleep(poll_interval)

    average = (clock() - start) / sample_size
    estimated = clamp_block_time(average)

    if estimated in (BASE_BLOCK_TIME, MAX_BLOCK_TIME):
        clog.warning(
            f"Estimated block time ({estimated:.2f}s, measured {average:.2f}s) hit the bounds. "
            "This might indicate unusual network conditions."
        )
    clog.info(f"Estimated block time: {estimated:.2f}s (based on {sample_size} block sample)")
    return estimated
