"""Redis-backed distributed lock.

Features:
- Atomic acquisition with ``SET key token NX PX ttl``
- Owner-checked release (a Lua compare-and-delete), so a worker whose lock
  expired cannot delete the lock another worker now holds
- Lazy connection with a shared connection pool
- Health checks
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse, urlunparse
from uuid import uuid4

try:
    from redis.asyncio import ConnectionPool, Redis
except ImportError as e:
    raise ImportError(
        "The Redis lock store requires the 'redis' package. "
        "Install it with: pip install eventpulse"
    ) from e

logger = logging.getLogger("eventpulse.redis")

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def _sanitize_url(url: str) -> str:
    """Mask password in Redis URL for logging."""
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = f"{parsed.username or ''}:****@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            return urlunparse(
                (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
            )
        return f"{parsed.hostname}:{parsed.port or 6379}"
    except ValueError:
        return "<url>"


@dataclass
class LockStoreHealth:
    """Health check result."""

    healthy: bool
    latency_ms: float
    details: dict[str, Any]


class RedisLockStore:
    """Lock store shared by every worker pointing at the same Redis.

    Args:
        redis_url: Redis connection URL.
        pool_size: Connection pool size.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", pool_size: int = 10) -> None:
        self._url = redis_url
        self._url_safe = _sanitize_url(redis_url)
        self._pool_size = pool_size
        self._redis: Redis | None = None
        self._conn_lock = asyncio.Lock()

    @property
    def redis_url(self) -> str:
        return self._url

    async def _get_client(self) -> Redis:
        if self._redis is not None:
            return self._redis
        async with self._conn_lock:
            if self._redis is None:
                pool = ConnectionPool.from_url(
                    self._url, max_connections=self._pool_size, decode_responses=True
                )
                self._redis = Redis(connection_pool=pool)
                logger.info(f"Connected to Redis at {self._url_safe}")
            return self._redis

    async def client(self) -> Redis:
        """Return the shared client, e.g. for a cache living in the same Redis."""
        return await self._get_client()

    async def try_acquire(self, key: str, ttl: float) -> str | None:
        redis = await self._get_client()
        token = uuid4().hex
        acquired = await redis.set(key, token, nx=True, px=max(1, int(ttl * 1000)))
        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        redis = await self._get_client()
        deleted = await redis.eval(_RELEASE_SCRIPT, 1, key, token)
        if not deleted:
            logger.warning(f"Lock {key} expired before release")
        return bool(deleted)

    async def health(self) -> LockStoreHealth:
        """Check connectivity to Redis."""
        start = time.monotonic()
        try:
            redis = await self._get_client()
            await redis.ping()
            return LockStoreHealth(
                healthy=True,
                latency_ms=(time.monotonic() - start) * 1000,
                details={"url": self._url_safe},
            )
        except Exception as e:
            return LockStoreHealth(
                healthy=False,
                latency_ms=(time.monotonic() - start) * 1000,
                details={"error": str(e)},
            )

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Closed Redis connection")
