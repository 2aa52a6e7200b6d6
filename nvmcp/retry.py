"""Bounded retry with exponential backoff, and a timeout wrapper.

Nothing in nvmcp retries automatically. These helpers are available for
callers that want it explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from nvmcp.exceptions import NvmcpError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    should_retry: Callable[[Exception], bool] = lambda e: True,
) -> T:
    """Run `operation` up to `retries` times, sleeping delay * backoff**n between tries."""
    if retries < 1:
        raise ValueError("retries must be >= 1")

    for attempt in range(1, retries + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == retries or not should_retry(e):
                raise
            wait = delay * backoff ** (attempt - 1)
            _logger.debug("Attempt %d/%d failed (%s), retrying in %.2fs", attempt, retries, e, wait)
            await asyncio.sleep(wait)
    raise AssertionError("unreachable")


async def with_timeout(
    awaitable: Awaitable[T], timeout: float, message: str = "Operation timed out"
) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise NvmcpError(message, {"timeout": timeout}) from None
