"""Retry logic with exponential backoff for remote calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.errors import TransientRemoteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy shared by every external call.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for a single delay
        exponential_base: Growth factor between consecutive delays
        jitter: Fraction of the delay added at random (0.1 adds up to 10%)
        retry_on: Exception types that are retried
    """
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retry_on: Tuple[Type[Exception], ...] = (TransientRemoteError,)

    @classmethod
    def from_settings(cls, settings: dict) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings["retry_max_attempts"]),
            base_delay=settings["retry_base_delay"],
            max_delay=settings["retry_max_delay"],
            jitter=settings["retry_jitter"],
        )

    def compute_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Delay before retry number ``attempt`` (zero-based)."""
        delay = min(self.max_delay, self.base_delay * (self.exponential_base ** attempt))
        if self.jitter:
            delay += delay * random.uniform(0, self.jitter)

        # Honor a server supplied Retry-After when it asks for longer
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, float(retry_after))
        return delay

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        description: Optional[str] = None,
        should_retry: Optional[Callable[[Exception], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        **kwargs
    ) -> Any:
        """
        Await ``func(*args, **kwargs)`` under this policy.

        ``should_retry`` can veto a retry for an individual error, e.g. for a
        non-idempotent request whose outcome is unknown.

        Returns:
            Whatever func returns

        Raises:
            The last exception once attempts are exhausted, or immediately
            for exceptions outside retry_on
        """
        name = description or getattr(func, "__name__", "call")

        for attempt in range(self.max_attempts):
            try:
                return await func(*args, **kwargs)

            except self.retry_on as e:
                if should_retry is not None and not should_retry(e):
                    logger.error(f"Not retrying {name}: {e}")
                    raise

                if attempt + 1 >= self.max_attempts:
                    logger.error(f"All {self.max_attempts} attempts failed for {name}: {e}")
                    raise

                delay = self.compute_delay(attempt, e)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_attempts} failed for {name}: {e}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                await sleep(delay)


def retry_with_exponential_backoff(policy: Optional[RetryPolicy] = None):
    """
    Decorator to retry a coroutine function with exponential backoff.

    Args:
        policy: Retry policy to apply; defaults to RetryPolicy()

    Returns:
        Decorated function with retry logic
    """
    policy = policy or RetryPolicy()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await policy.call(func, *args, description=func.__name__, **kwargs)

        return wrapper

    return decorator
