import threading
import time
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()


class RateLimiter:
    """Token bucket rate limiter for provider governance"""

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_size: int = 1,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.rate = requests_per_minute / 60.0
        self.burst_size = burst_size
        self.tokens = float(burst_size)
        self._clock = clock or time.monotonic
        self.last_update = self._clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_update
        self.tokens = min(self.burst_size, self.tokens + elapsed * self.rate)
        self.last_update = now

    def try_acquire(self, requester_id: str = "system") -> bool:
        """Take a token without waiting. Returns False when the bucket is empty."""
        with self._lock:
            self._refill()
            if self.tokens < 1:
                logger.debug(
                    "rate_limit_blocked",
                    requester_id=requester_id,
                    tokens=round(self.tokens, 3),
                )
                return False
            self.tokens -= 1
            return True

