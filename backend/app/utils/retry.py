"""
Retry policy - exponential backoff with jitter, shared by every model call site.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

from app.config import logger
from app.errors import TransientModelFailure


def _transient_only(error: Exception) -> bool:
    return isinstance(error, TransientModelFailure)


class RetryPolicy:
    """
    Runs an async operation up to ``max_attempts`` times.

    The wait before retry ``n`` (1-based) is
    ``min(base_delay * 2**n + uniform(0, jitter), max_delay)``.
    Errors for which ``is_retryable`` returns False propagate immediately.
    """

    def __init__(self, max_attempts: int = 6, base_delay: float = 1.0, max_delay: float = 60.0,
                 jitter: float = 5.0,
                 is_retryable: Optional[Callable[[Exception], bool]] = None,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None,
                 rng: Optional[random.Random] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.is_retryable = is_retryable or _transient_only
        self.sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RetryPolicy":
        params = dict(
            max_attempts=settings.grading_max_retries + 1,
            base_delay=settings.grading_base_delay,
            max_delay=settings.grading_max_delay,
            jitter=settings.grading_jitter,
        )
        params.update(overrides)
        return cls(**params)

    def backoff(self, retry_number: int) -> float:
        delay = self.base_delay * (2 ** retry_number)
        if self.jitter > 0:
            delay += self._rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    async def run(self, operation: Callable[[int], Awaitable], description: str = "operation",
                  before_retry: Optional[Callable[[int], None]] = None):
        """
        Call ``operation(attempt)`` until it succeeds or attempts run out.

        ``before_retry(attempt)`` runs after each backoff sleep; whatever it
        raises ends the loop without further attempts.
        """
        last_error = None
        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self.backoff(attempt)
                logger.info(f"Retry {attempt}/{self.max_attempts - 1} for {description}, waiting {delay:.1f}s")
                await self.sleep(delay)
                if before_retry is not None:
                    before_retry(attempt)

            try:
                return await operation(attempt)
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                last_error = e
                logger.warning(f"{description} failed (attempt {attempt + 1}/{self.max_attempts}): {e}")

        logger.error(f"{description} gave up after {self.max_attempts} attempts")
        raise last_error
