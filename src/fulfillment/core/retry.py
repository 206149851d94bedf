"""Backoff helpers for transport and ledger sync calls."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .exceptions import TransientError

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (TransientError,)
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds after the given zero-based attempt."""
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts - 1


def _backoff(config: RetryConfig, attempt: int, error: Exception, operation_name: str) -> float:
    """Return the wait before the next attempt, or re-raise when attempts run out."""
    if config.is_last(attempt):
        logger.error(f"{operation_name} gave up after {config.max_attempts} attempts: {error}")
        raise error

    delay = config.delay_for(attempt)
    logger.warning(
        f"{operation_name} attempt {attempt + 1}/{config.max_attempts} failed: {error}; "
        f"next try in {delay:.1f}s"
    )
    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    on_retry: Callable[[Exception, int], None] | None = None,
) -> T:
    """Await ``operation`` until it succeeds, backing off on retryable errors."""
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return await operation()
        except config.retryable_exceptions as e:
            delay = _backoff(config, attempt, e, operation_name)
            if on_retry:
                on_retry(e, attempt)
            await asyncio.sleep(delay)
            attempt += 1


def with_retry_sync(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Blocking counterpart of ``with_retry``.

    ``sleep`` is injectable so callers running on a logical clock can skip
    wall-clock waits.
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return operation()
        except config.retryable_exceptions as e:
            sleep(_backoff(config, attempt, e, operation_name))
            attempt += 1
