"""
Async Hygiene Tools
Bounded retry with exponential backoff and a deterministic clock for tests.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings."""
    max_attempts: int = 3
    base_delay: float = 0.25
    max_delay: float = 4.0
    backoff_factor: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.ARK_SUBMIT_MAX_RETRIES,
            base_delay=settings.ARK_RETRY_BASE_MS / 1000.0,
            max_delay=settings.ARK_RETRY_MAX_MS / 1000.0,
        )


class AsyncRetryError(Exception):
    """Raised when an async operation fails after all retries."""

    def __init__(self, message: str, attempts: int, last_exception: Optional[BaseException]):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


def backoff_delays(
    max_attempts: int,
    base_delay: float,
    max_delay: float,
    backoff_factor: float = 2.0,
):
    """Yield the capped delay before each retry (max_attempts - 1 values)."""
    delay = base_delay
    for _ in range(max_attempts - 1):
        yield min(delay, max_delay)
        delay *= backoff_factor


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """
    Retry an async function with exponential backoff and jitter.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately.

    Args:
        func: The async function to retry
        max_attempts: Maximum number of attempts
        base_delay: Base delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        backoff_factor: Multiplier for delay after each failure
        jitter: Whether to add random jitter to delays
        retry_on: Exception types that are worth another attempt
        label: Name used in log lines

    Returns:
        The result of the function

    Raises:
        AsyncRetryError: If all attempts fail with retryable errors
    """
    last_exception = None
    delays = backoff_delays(max_attempts, base_delay, max_delay, backoff_factor)

    for attempt in range(max_attempts):
        try:
            return await func()
        except retry_on as e:
            last_exception = e
            if attempt == max_attempts - 1:
                break

            actual_delay = next(delays)
            if jitter:
                # Add ±25% jitter
                actual_delay *= random.uniform(0.75, 1.25)

            logger.warning(f"[async_tools] {label} attempt {attempt + 1}/{max_attempts} failed: {e}. Retrying in {actual_delay:.2f}s")
            await asyncio.sleep(actual_delay)

    raise AsyncRetryError(
        f"{label} failed after {max_attempts} attempts",
        attempts=max_attempts,
        last_exception=last_exception,
    ) from last_exception


async def retry_with_policy(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...],
    label: str,
) -> T:
    return await retry_async(
        func,
        max_attempts=policy.max_attempts,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        backoff_factor=policy.backoff_factor,
        jitter=policy.jitter,
        retry_on=retry_on,
        label=label,
    )


class DeterministicClock:
    """A deterministic clock for testing that can be frozen and advanced."""

    def __init__(self, start_time: float = 0.0):
        self._time = start_time
        self._frozen = False

    def time(self) -> float:
        """Get current time."""
        if self._frozen:
            return self._time
        return time.time()

    __call__ = time

    def freeze(self, at: Optional[float] = None):
        """Freeze the clock at ``at`` or at the current time."""
        self._frozen = True
        self._time = time.time() if at is None else at

    def advance(self, seconds: float):
        """Advance the clock by the given number of seconds."""
        if not self._frozen:
            raise RuntimeError("Clock must be frozen to advance")
        self._time += seconds

    def unfreeze(self):
        """Unfreeze the clock to use real time."""
        self._frozen = False
