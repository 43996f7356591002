"""Bounded retry with exponential backoff for async operations."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every attempt of a retried operation failed."""

    def __init__(self, operation: str, attempts: int, last_exception: Exception):
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_exception}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_exception = last_exception


def compute_backoff(
    attempt: int,
    base_delay: float,
    max_delay: float = 30.0,
    jitter: bool = True,
) -> float:
    """Delay before retry ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter and delay > 0:
        # Up to 10% jitter to avoid synchronized retries across variants
        delay += random.uniform(0, delay * 0.1)
    return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    operation: str,
    retry_on: tuple[type[Exception], ...],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """Call ``func`` until it succeeds or ``max_attempts`` is reached.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. ``on_retry(attempt, exc)`` runs before each backoff sleep.

    Raises:
        RetryExhaustedError: The last retryable failure after all attempts
    """
    last_exception: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            result = await func()
            if attempt > 1:
                logger.info(f"{operation} succeeded on attempt {attempt}")
            return result

        except retry_on as e:
            last_exception = e

            if attempt >= max_attempts:
                logger.error(f"{operation} failed on final attempt {attempt}: {e}")
                break

            delay = compute_backoff(attempt, base_delay, max_delay)
            logger.warning(
                f"{operation} failed on attempt {attempt}/{max_attempts}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            if on_retry:
                on_retry(attempt, e)
            await asyncio.sleep(delay)

    raise RetryExhaustedError(operation, max_attempts, last_exception)
