"""Bounded retry with exponential backoff for ledger I/O."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from liqwatch.errors import ConnectivityError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.5  # seconds


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay after the given (1-based) failed attempt: base, 2x base, 4x base..."""
    return base_delay * (2 ** (attempt - 1))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    retry_on: tuple[type[BaseException], ...] = (ConnectivityError,),
    label: str = "",
) -> T:
    """``fn()`` 을 최대 ``attempts`` 번 호출.

    Only exceptions in ``retry_on`` are retried; anything else propagates on
    the first failure. After the last attempt the last error is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt == attempts:
                logger.warning(
                    "%s failed after %d attempts: %s", label or "call", attempts, exc,
                )
                raise
            wait = backoff_delay(attempt, base_delay)
            logger.warning(
                "%s error (attempt %d/%d): %s — retrying in %.1fs",
                label or "call", attempt, attempts, exc, wait,
            )
            await asyncio.sleep(wait)

    raise AssertionError("unreachable")  # pragma: no cover
