"""
Bounded retry for transient failures.

Applied to the pre-write conflict read and to post-commit webhook
delivery. Only exception types listed in ``retry_on`` are retried, and a
classified SentinelError never is. When attempts run out the last
exception propagates unchanged.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sentinel.config import RetryConfig
from sentinel.errors import SentinelError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryableErrors = tuple[type[BaseException], ...]


class RetryPolicy:
    """Retry an async operation up to ``config.retries`` extra times.

    Delays grow exponentially from ``base_delay_sec`` and are capped at
    ``max_delay_sec``.
    """

    def __init__(
        self,
        config: RetryConfig,
        retry_on: RetryableErrors = (TransientStoreError,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._retry_on = retry_on
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.retries + 1

    def _delay_for(self, attempt: int) -> float:
        return min(self._config.base_delay_sec * (2 ** (attempt - 1)), self._config.max_delay_sec)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        retry_on: Optional[RetryableErrors] = None,
    ) -> T:
        retryable = retry_on if retry_on is not None else self._retry_on
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except retryable as exc:
                if isinstance(exc, SentinelError) or attempt >= self.max_attempts:
                    raise
                delay = self._delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    description, attempt, self.max_attempts, exc, delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
