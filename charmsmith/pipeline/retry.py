"""Bounded retry with exponential backoff."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from charmsmith.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` up to ``max_retries + 1`` times.

    The delay before retry number ``attempt + 1`` is ``base_delay * 2 ** attempt``.
    The last error is re-raised once the budget is spent.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_retries:
                logger.error(
                    "retry_budget_exhausted",
                    attempts=attempt + 1,
                    error=str(e)
                )
                raise

            delay = base_delay * (2 ** attempt)
            logger.warning(
                "retry_scheduled",
                attempt=attempt + 1,
                max_attempts=max_retries + 1,
                delay_seconds=delay,
                error=str(e)
            )
            await sleep(delay)
            attempt += 1
