"""Rate limiting shared by the upstream HTTP clients."""

import asyncio
import time


class TokenBucket:
    """Simple in-memory token bucket rate limiter."""

    def __init__(self, capacity: int, refill_rate: float) -> None:
        """Initialize token bucket.

        Args:
            capacity: Maximum tokens in bucket
            refill_rate: Tokens per second refill rate
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = capacity
        self.last_refill = time.time()

    async def acquire(self) -> bool:
        """Try to acquire a token, return True if successful."""
        now = time.time()
        time_passed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + time_passed * self.refill_rate)
        self.last_refill = now

        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    async def wait(self, poll_interval: float = 0.1) -> None:
        """Block until a token is available."""
        while not await self.acquire():
            await asyncio.sleep(poll_interval)
