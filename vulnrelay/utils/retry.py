"""Retry utilities for transient scanner-backend failures.

Retries here happen inside a single fetch. The collection engine itself
never retries: an image that still fails after its attempts is dropped
from the current cycle and tried again on the next one.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def async_retry(
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    backoff_max: float = 30.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[Exception, int], None] | None = None,
):
    """Decorator for retrying async functions with exponential backoff.

    The first retry waits one second, each further retry backoff_base
    times longer, capped at backoff_max.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        backoff_base: Multiplier between consecutive waits
        backoff_max: Maximum wait between attempts (seconds)
        exceptions: Exception types that trigger a retry; anything else
            propagates immediately
        on_retry: Optional callback called with (exception, attempt) before
            each wait

    Returns:
        Decorated function that retries on failure

    Example:
        @async_retry(max_attempts=3, exceptions=(httpx.TransportError,))
        async def fetch_containers(client: httpx.AsyncClient, url: str):
            response = await client.get(url)
            response.raise_for_status()
            return response.json()
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise

                    backoff = min(backoff_base ** (attempt - 1), backoff_max)
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed: {e}. "
                        f"Retrying in {backoff:.1f}s..."
                    )

                    if on_retry:
                        on_retry(e, attempt)

                    await asyncio.sleep(backoff)
                    attempt += 1

        return wrapper

    return decorator
