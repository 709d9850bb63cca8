"""
Token bucket used to cap the publish rate.

The bucket starts full. With the default capacity of 1 there is no burst:
every acquire() after the first waits 1/rate seconds since the previous one.
"""

import logging
from typing import Optional

from harness.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)


class TokenBucket:
    """Async token bucket limiting callers to `rate` acquisitions per second."""

    def __init__(self, rate: float, capacity: float = 1.0, clock: Optional[Clock] = None):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock or SYSTEM_CLOCK
        self._tokens = capacity
        self._updated = self._clock.monotonic()

    def _refill(self) -> None:
        now = self._clock.monotonic()
        elapsed = now - self._updated
        self._updated = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        self._refill()
        if self._tokens < 1:
            wait = (1 - self._tokens) / self.rate
            logger.debug("Rate limit reached, waiting %.3fs", wait)
            await self._clock.sleep(wait)
            self._refill()
        # Float drift after a sleep can leave the bucket fractionally short of 1.
        self._tokens = max(0.0, self._tokens - 1)
