from typing import Callable, Dict
from dataclasses import dataclass
import asyncio
import math
import time
import structlog

logger = structlog.get_logger(__name__)


@dataclass
class _Bucket:
    tokens: float
    last_seen: float


class RateLimiter:
    """Per-user token bucket with linear refill.

    A bucket holds at most ``rate`` tokens and regains ``rate * elapsed / window``
    tokens since it was last observed, keeping fractional tokens.
    """

    def __init__(self, rate: int = 100, window: float = 60.0, clock: Callable[[], float] = time.monotonic):
        if rate <= 0 or window <= 0:
            raise ValueError("rate and window must be positive")
        self.rate = rate
        self.window = window
        self.clock = clock
        self.buckets: Dict[str, _Bucket] = {}
        self._lock = asyncio.Lock()

    async def allow(self, uid: str) -> bool:
        """Consume one token for ``uid`` if one is available"""

        async with self._lock:
            bucket = self._refill(uid)
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True
            return False

    async def retry_after(self, uid: str) -> int:
        """Whole seconds until ``uid`` has a token again (at least 1)"""

        async with self._lock:
            bucket = self._refill(uid)
            missing = max(0.0, 1.0 - bucket.tokens)
            return max(1, math.ceil(missing * self.window / self.rate))

    async def sweep(self) -> int:
        """Drop buckets idle for more than twice the window"""

        now = self.clock()
        async with self._lock:
            idle = [uid for uid, bucket in self.buckets.items() if now - bucket.last_seen > 2 * self.window]
            for uid in idle:
                del self.buckets[uid]
            return len(idle)

    async def sweep_forever(self, interval: float = 300.0) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = await self.sweep()
            if removed:
                logger.debug("Rate limiter sweep", removed=removed)

    def _refill(self, uid: str) -> _Bucket:
        now = self.clock()
        bucket = self.buckets.get(uid)
        if bucket is None:
            bucket = _Bucket(tokens=float(self.rate), last_seen=now)
            self.buckets[uid] = bucket
            return bucket

        elapsed = max(0.0, now - bucket.last_seen)
        bucket.tokens = min(float(self.rate), bucket.tokens + self.rate * elapsed / self.window)
        bucket.last_seen = now
        return bucket
