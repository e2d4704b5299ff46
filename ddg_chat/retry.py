"""Bounded retry with a constant delay between attempts."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[int], Awaitable[T]],
    attempts: int,
    delay: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds or ``attempts`` runs are used up.

    Every attempt after the first waits ``delay`` seconds. Only UpstreamError
    is retried; on exhaustion the last one is re-raised unchanged.
    """
    last_error: Optional[UpstreamError] = None
    for attempt in range(max(1, attempts)):
        if attempt > 0:
            logger.info(f"Retrying upstream call, attempt {attempt + 1} of {attempts}")
            await sleep(delay)
        try:
            return await operation(attempt)
        except UpstreamError as e:
            last_error = e
            logger.warning(f"Attempt {attempt + 1} failed: {type(e).__name__}: {e.message}")

    raise last_error
