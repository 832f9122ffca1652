"""Retry policy and deferred retry scheduling.

Features:
- Per-provider attempt counters
- Exponential backoff with an upper cap and optional jitter
- Explicit ScheduledRetry continuations awaited through a RetryScheduler
- Built-in structured logging for observability
"""

import asyncio
import random
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import structlog

from metasearch.models.config import RetryConfig

logger = structlog.get_logger(__name__)


class RetryPolicy:
    """Backoff calculation and per-provider attempt bookkeeping.

    - Exponential backoff: delay = base * 2^attempt
    - Jitter: ±jitter_factor randomization (disabled by default)
    - Max delay cap: prevents excessive wait times
    """

    def __init__(self, config: Optional[RetryConfig] = None) -> None:
        self.config = config or RetryConfig()
        self._attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def calculate_delay(self, attempt: int) -> int:
        """Calculate delay in milliseconds for a retry.

        Args:
            attempt: Retries already made before this one (0-indexed)

        Returns:
            Delay in milliseconds to wait before the next attempt
        """
        base_delay = self.config.base_delay_ms * (2 ** max(attempt, 0))

        if self.config.jitter_factor > 0:
            jitter = base_delay * self.config.jitter_factor
            base_delay = base_delay + random.uniform(-jitter, jitter)

        return int(min(base_delay, self.config.max_delay_ms))

    def can_retry(self, attempt: int) -> bool:
        """Whether another retry is allowed after `attempt` retries."""
        return attempt < self.config.max_retries

    def attempts(self, provider_id: str) -> int:
        with self._lock:
            return self._attempts.get(provider_id, 0)

    def record_attempt(self, provider_id: str) -> int:
        """Increment the provider's retry counter and return the new value."""
        with self._lock:
            count = self._attempts.get(provider_id, 0) + 1
            self._attempts[provider_id] = count
            return count

    def reset_attempts(self, provider_id: str) -> None:
        with self._lock:
            self._attempts.pop(provider_id, None)

    def reset_all(self) -> None:
        with self._lock:
            self._attempts.clear()


@dataclass(frozen=True)
class ScheduledRetry:
    """A deferred re-entry into a provider's resolution flow."""

    provider_id: str
    attempt: int
    delay_ms: int

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


class RetryScheduler:
    """Awaits scheduled retries.

    The sleep function is injectable so tests can run retries without real
    delays. No lock is held while waiting.
    """

    def __init__(
        self,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_retry: Optional[Callable[[ScheduledRetry], None]] = None,
    ) -> None:
        self._sleep = sleep or asyncio.sleep
        self._on_retry = on_retry

    async def defer(self, retry: ScheduledRetry) -> None:
        """Suspend the calling flow until the retry is due."""
        logger.warning(
            "retry_scheduled",
            provider=retry.provider_id,
            attempt=retry.attempt,
            delay_ms=retry.delay_ms,
        )

        if self._on_retry is not None:
            self._on_retry(retry)

        await self._sleep(retry.delay_seconds)
