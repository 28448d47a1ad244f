"""
Bounded fixed-delay retry for the few calls that are retried at all.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_fixed(
    operation: Callable[[int], Awaitable[T]],
    max_attempts: int,
    delay: float,
    description: str,
) -> T:
    """
    Run an async operation until it succeeds or attempts run out.

    Args:
        operation: Coroutine factory receiving the zero-based attempt number
        max_attempts: Maximum number of attempts
        delay: Seconds to wait between attempts
        description: What is being attempted, for log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The error of the last attempt once all attempts failed
    """
    last_error: BaseException = RuntimeError(f"{description}: no attempt made")

    for attempt in range(max_attempts):
        logger.info(f"+-> Attempt {attempt + 1}/{max_attempts} to {description}")
        try:
            return await operation(attempt)
        except Exception as e:
            last_error = e
            if attempt < max_attempts - 1:
                logger.warning(
                    f"Attempt {attempt + 1} to {description} failed, retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)

    logger.error(f"All {max_attempts} attempts to {description} failed: {last_error}")
    raise last_error
