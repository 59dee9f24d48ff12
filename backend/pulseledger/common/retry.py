"""
Retry policy for collaborator calls that can be rate-limited
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitError(Exception):
    """Raised when an external API answers with a rate-limit signal (HTTP 429)."""

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class RetryPolicy:
    """
    Bounded retry with fixed or exponential delay.

    max_retries counts retries after the first attempt, so max_retries=3
    allows at most 4 calls. Only exceptions matching retry_on are retried;
    anything else propagates immediately. After the last retry the final
    error is re-raised unchanged.
    """

    max_retries: int = 3
    delay_seconds: float = 30.0
    backoff: str = "fixed"  # fixed / exponential
    max_delay_seconds: float = 300.0
    retry_on: Tuple[Type[BaseException], ...] = (RateLimitError,)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls, **overrides) -> "RetryPolicy":
        from pulseledger.common.config import settings
        kwargs = {
            "max_retries": settings.rate_limit_max_retries,
            "delay_seconds": settings.rate_limit_delay_seconds,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry N (1-based)"""
        if self.backoff == "exponential":
            return min(self.delay_seconds * (2 ** (retry_number - 1)), self.max_delay_seconds)
        return self.delay_seconds

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on)

    async def run(self, func: Callable[[], Awaitable[T]], description: str = "call") -> T:
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.max_retries:
                    if attempt:
                        logger.warning(f"{description} failed after {attempt} retries: {e}")
                    raise
                attempt += 1
                delay = self.delay_for(attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    delay = max(delay, float(retry_after))
                logger.warning(
                    f"{description} rate limited, retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                await self.sleep(delay)
