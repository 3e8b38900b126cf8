from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
import asyncio
import time
import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()


class CacheMemoryStore:
    """In-memory read-through cache with per-entry TTL.

    The store has no size bound; entries leave only when they expire or are
    deleted. ``get_or_set`` does not dedupe concurrent loads of the same key.
    """

    def __init__(self, default_ttl: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self.clock = clock
        self.cache: Dict[str, Tuple[Any, float]] = {}
        self.hits = 0
        self.misses = 0
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Set a value in cache with TTL"""

        expires_at = self.clock() + (self.default_ttl if ttl is None else ttl)
        async with self._lock:
            self.cache[key] = (value, expires_at)

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""

        value = await self._lookup(key)
        return None if value is _MISSING else value

    async def get_or_set(self, key: str, ttl: Optional[float], loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value or load, store and return it"""

        value = await self._lookup(key)
        if value is not _MISSING:
            return value

        value = await loader()
        await self.set(key, value, ttl)
        return value

    async def delete(self, key: str) -> bool:
        """Delete a key from cache"""

        async with self._lock:
            return self.cache.pop(key, None) is not None

    async def clear_expired(self) -> int:
        """Clear expired entries and return count"""

        now = self.clock()
        async with self._lock:
            expired_keys = [key for key, (_, expires_at) in self.cache.items() if now >= expires_at]
            for key in expired_keys:
                del self.cache[key]
            return len(expired_keys)

    async def sweep_forever(self, interval: float) -> None:
        """Evict expired entries every ``interval`` seconds until cancelled"""

        while True:
            await asyncio.sleep(interval)
            removed = await self.clear_expired()
            if removed:
                logger.debug("Cache sweep", removed=removed)

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        now = self.clock()
        async with self._lock:
            active_count = sum(1 for _, expires_at in self.cache.values() if now < expires_at)
            return {
                "total_keys": len(self.cache),
                "active_keys": active_count,
                "expired_keys": len(self.cache) - active_count,
                "hits": self.hits,
                "misses": self.misses
            }

    async def _lookup(self, key: str) -> Any:
        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                self.misses += 1
                return _MISSING

            value, expires_at = entry
            if self.clock() >= expires_at:
                del self.cache[key]
                self.misses += 1
                return _MISSING

            self.hits += 1
            return value
