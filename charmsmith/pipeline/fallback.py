"""
Fallback Chains

Runs an ordered list of async producers and returns the first one that
succeeds. When every producer fails, a default is returned instead of
raising.
"""

from typing import Awaitable, Callable, Sequence, Tuple, TypeVar, Union

from charmsmith.core.logging import get_logger
from charmsmith.core.metrics import record_fallback

logger = get_logger(__name__)

T = TypeVar("T")

Producer = Tuple[str, Callable[[], Awaitable[T]]]

DEFAULT_STEP = "default"


async def first_success(
    chain: str,
    producers: Sequence[Producer],
    default: Union[T, Callable[[], T]],
) -> Tuple[str, T]:
    """
    Try each named producer in order, stopping at the first success.

    Args:
        chain: Name of the chain, used in logs and metrics
        producers: (step_name, zero-argument coroutine function) pairs
        default: Value, or zero-argument callable producing it, used when all
            producers fail

    Returns:
        Tuple of (winning step name or "default", value)
    """
    for step, produce in producers:
        try:
            value = await produce()
        except Exception as e:
            logger.warning(
                "fallback_step_failed",
                chain=chain,
                step=step,
                error=str(e),
                error_type=type(e).__name__
            )
            continue

        record_fallback(chain, step)
        logger.info("fallback_step_succeeded", chain=chain, step=step)
        return step, value

    record_fallback(chain, DEFAULT_STEP)
    logger.warning("fallback_default_used", chain=chain)
    value = default() if callable(default) else default
    return DEFAULT_STEP, value
