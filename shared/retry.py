"""
Retry mechanism for resilient operations.
"""

import asyncio
from typing import Any, Optional, Callable, Awaitable, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self, max_attempts: int = 2, delay: float = 0.5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.max_attempts = max_attempts
        self.delay = delay


class RetryPolicy:
    """Bounded retry policy: how many attempts, which errors, how long to wait.

    ``run`` re-raises the last error unchanged once attempts are exhausted, so
    callers keep seeing the original exception type.
    """

    def __init__(self,
                 config: RetryConfig,
                 retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                 should_retry: Optional[Callable[[BaseException], bool]] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 name: str = "default"):
        self.config = config
        self.retry_on = retry_on
        self.should_retry = should_retry
        self._sleep = sleep
        self.logger = get_logger(f"retry.{name}")

    @classmethod
    def fixed(cls, max_attempts: int, delay: float, **kwargs) -> "RetryPolicy":
        """Policy with a constant, jitter-free backoff."""
        return cls(RetryConfig(max_attempts=max_attempts, delay=delay), **kwargs)

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    def backoff(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt."""
        return self.config.delay

    def _is_retryable(self, exc: BaseException) -> bool:
        if not isinstance(exc, self.retry_on):
            return False
        if self.should_retry is not None:
            return self.should_retry(exc)
        return True

    async def run(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """Call ``func`` until it succeeds or the policy gives up."""
        attempt = 1
        while True:
            try:
                result = await func()
            except Exception as exc:
                if attempt >= self.config.max_attempts or not self._is_retryable(exc):
                    if attempt > 1:
                        self.logger.error(
                            "All retry attempts exhausted",
                            attempt=attempt,
                            max_attempts=self.config.max_attempts,
                            error=str(exc)
                        )
                    raise

                delay = self.backoff(attempt)
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt,
                    delay=delay,
                    error=str(exc)
                )
                await self._sleep(delay)
                attempt += 1
                continue

            if attempt > 1:
                self.logger.info("Retry succeeded", attempt=attempt)
            return result
