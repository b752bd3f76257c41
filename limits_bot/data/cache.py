"""
Short-lived cache of analysis results.

Features:
- In-process expiring map guarded by a single asyncio lock
- Redis-backed variant with the same key/TTL contract for shared deployments
- Optional LRU bound on the in-process map
"""

import asyncio
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from loguru import logger
import redis.asyncio as redis
from redis.exceptions import RedisError

from limits_bot.data.models import AnalysisResult


DEFAULT_TTL = 60
DEFAULT_MAX_ENTRIES = 256


def cache_key(symbol: str, depth_percent: Decimal) -> str:
    """Build cache key: SOL + 8 -> 'SOL:8'."""
    return f"{symbol.upper()}:{depth_percent}"


# =============================================================================
# In-process Cache
# =============================================================================

@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Cached result with its expiration instant (clock seconds)."""
    result: AnalysisResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResultCache:
    """
    In-process TTL cache for analysis results.

    Usage:
        cache = ResultCache(ttl=60)
        await cache.put("SOL", Decimal("8"), result)
        result = await cache.get("SOL", Decimal("8"))
    """

    def __init__(
        self,
        ttl: int = DEFAULT_TTL,
        max_entries: Optional[int] = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

        # Stats
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }

    async def get(self, symbol: str, depth_percent: Decimal) -> Optional[AnalysisResult]:
        """Get a live result, or None if missing or expired."""
        key = cache_key(symbol, depth_percent)

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return entry.result

    async def put(self, symbol: str, depth_percent: Decimal, result: AnalysisResult) -> None:
        """Store a result for ``ttl`` seconds; last writer wins."""
        key = cache_key(symbol, depth_percent)

        async with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(result=result, expires_at=now + self.ttl)
            self._entries.move_to_end(key)
            self._evict(now)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def _evict(self, now: float) -> None:
        """Drop expired entries, then least recently used ones over the bound."""
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            del self._entries[key]

        if self.max_entries:
            while len(self._entries) > self.max_entries:
                key, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached result {key}")


# =============================================================================
# Redis Cache
# =============================================================================

@dataclass
class RedisCacheConfig:
    """Redis result cache configuration."""
    url: str = "redis://localhost:6379/0"
    ttl: int = DEFAULT_TTL
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    # Key prefix
    prefix: str = "limits:result:"


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class RedisResultCache:
    """
    Redis-backed result cache shared between bot instances.

    Keeps the in-process contract: (symbol, depth) key, fixed TTL from
    insertion. A Redis outage degrades to cache misses; it never fails the
    request.
    """

    def __init__(self, config: RedisCacheConfig = None, client: Optional[redis.Redis] = None):
        self.config = config or RedisCacheConfig()
        self.ttl = self.config.ttl
        self._redis: Optional[redis.Redis] = client

    def _key(self, symbol: str, depth_percent: Decimal) -> str:
        """Build cache key with prefix."""
        return f"{self.config.prefix}{cache_key(symbol, depth_percent)}"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.config.url,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_connect_timeout,
                decode_responses=True,
            )

        try:
            await self._redis.ping()
            logger.info(f"Redis connected: {self.config.url}")
        except RedisError as e:
            logger.error(f"Redis connection failed: {e}")
            raise

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis disconnected")

    @property
    def stats(self) -> Dict[str, Any]:
        return {"backend": "redis", "url": self.config.url}

    async def get(self, symbol: str, depth_percent: Decimal) -> Optional[AnalysisResult]:
        """Get cached result; Redis or decoding failures count as a miss."""
        if not self._redis:
            return None

        key = self._key(symbol, depth_percent)
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            logger.error(f"Failed to read {key} from redis: {e}")
            return None

        if value is None:
            return None

        try:
            return AnalysisResult.from_dict(json.loads(value))
        except (ValueError, KeyError, TypeError, ArithmeticError) as e:
            logger.error(f"Failed to deserialize redis data for {key}: {e}")
            return None

    async def put(self, symbol: str, depth_percent: Decimal, result: AnalysisResult) -> None:
        """Store result with TTL; failures are logged."""
        if not self._redis:
            return

        key = self._key(symbol, depth_percent)
        try:
            await self._redis.set(key, json.dumps(result.to_dict(), cls=DecimalEncoder), ex=self.ttl)
        except RedisError as e:
            logger.error(f"Failed to save result for {key}: {e}")

    async def clear(self) -> None:
        """Delete all result keys."""
        if not self._redis:
            return

        async for key in self._redis.scan_iter(match=f"{self.config.prefix}*"):
            await self._redis.delete(key)
