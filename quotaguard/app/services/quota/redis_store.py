"""Redis quota store using a server-side Lua script for atomicity.

Redis key format:
- {prefix}{quota_key} - integer counter with a native millisecond expiry
"""

from typing import Any, Optional

import redis.asyncio as aioredis

from quotaguard.app.core.logging import get_logger
from quotaguard.app.services.quota.base import QuotaStore, validate_increment_args
from quotaguard.app.services.quota.redis_lua import INCREMENT_SCRIPT

logger = get_logger(__name__)


class RedisQuotaStore(QuotaStore):
    """Quota store backed by Redis counters.

    Each increment is a single EVAL round trip, so the limit check and the
    increment can never interleave with another client. Window expiry is
    left to Redis: once the counter's TTL elapses the key disappears and the
    next increment starts a new window.

    Example:
        >>> store = RedisQuotaStore.from_url("redis://localhost:6379/0")
        >>> await store.increment("user:1", 1, 60_000, limit=100)
    """

    name = "redis"
    DEFAULT_PREFIX = "quota:"

    def __init__(self, client: Any, prefix: str = DEFAULT_PREFIX) -> None:
        """Initialize the store around a ready client.

        Args:
            client: A connected ``redis.asyncio.Redis`` (or compatible) client
            prefix: Prefix prepended to every quota key
        """
        self._redis = client
        self._owns_client = False
        self.prefix = prefix

    @classmethod
    def from_url(
        cls, redis_url: str, prefix: str = DEFAULT_PREFIX, **client_kwargs: Any
    ) -> "RedisQuotaStore":
        """Create a store that owns its client; ``close()`` closes it."""
        store = cls(aioredis.from_url(redis_url, **client_kwargs), prefix=prefix)
        store._owns_client = True
        return store

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def increment(
        self,
        key: str,
        delta: int,
        window_ms: int,
        limit: Optional[int] = None,
    ) -> int:
        validate_increment_args(key, delta, window_ms, limit)
        result = await self._redis.eval(
            INCREMENT_SCRIPT,
            1,  # Number of keys
            self._make_key(key),  # KEYS[1]
            window_ms,  # ARGV[1]
            "nil" if limit is None else limit,  # ARGV[2]
            delta,  # ARGV[3]
        )
        return int(result)

    async def close(self) -> None:
        """Close the Redis connection if this store created it."""
        if self._owns_client and self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.debug("Closed quota Redis connection")
