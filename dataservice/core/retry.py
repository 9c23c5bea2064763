"""
Retry Decorator with Exponential Backoff

Provides a decorator for retrying async functions with exponential backoff
and jitter. Used for establishing database connections on service start and
for transport failures of remote action calls.
"""

import asyncio
import functools
import logging
import random
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)
):
    """
    Decorator for retrying async functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
            Total attempts = max_retries + 1
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential growth (default: 2.0)
            Delay formula: base_delay * (exponential_base ** attempt)
        jitter: Whether to add random jitter of ±20% (default: True)
        exceptions: Tuple of exceptions that trigger a retry
            Anything else propagates immediately

    Returns:
        Decorated async function that retries on failure

    Example:
        @retry_with_backoff(max_retries=3, base_delay=1.0)
        async def connect():
            await adapter.connect()
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    if attempt == max_retries:
                        logger.error(
                            f"{func.__name__} failed after {max_retries + 1} attempts: {e}",
                            exc_info=True
                        )
                        raise

                    delay = min(
                        base_delay * (exponential_base ** attempt),
                        max_delay
                    )

                    if jitter:
                        jitter_amount = delay * 0.2
                        delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries + 1} "
                        f"failed with {type(e).__name__}: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    await asyncio.sleep(delay)

        return wrapper
    return decorator
