import asyncio, time
from typing import Optional

class TokenBucket:
    """Token bucket for requests-per-minute rate limiting.

    ``capacity`` bounds the burst size. A capacity of 1 spaces calls evenly at
    ``60 / rate_per_minute`` seconds, which is how the VIN lookups are throttled.
    """
    def __init__(self, rate_per_minute: int, capacity: Optional[int] = None, *, clock=time.monotonic):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.rate = rate_per_minute / 60.0
        self.capacity = capacity or rate_per_minute
        self.tokens = float(self.capacity)
        self._clock = clock
        self.last = clock()
        self.lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return 1.0 / self.rate

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last = now

    async def acquire(self, n: int = 1):
        if n > self.capacity:
            raise ValueError(f"cannot acquire {n} tokens from a bucket of capacity {self.capacity}")
        async with self.lock:
            self._refill()
            while self.tokens < n:
                await asyncio.sleep((n - self.tokens) / self.rate)
                self._refill()
            self.tokens -= n
