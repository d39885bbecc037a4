"""Cache Client: namespaced, fail-soft wrapper over redis.asyncio.

Invariants:
    - Every logical key is sent as "{namespace}:{key}"; patterns likewise
    - No method raises: an unreachable cache yields None / False / 0
    - Pattern invalidation walks SCAN cursors, never KEYS
    - Values are JSON; a value that fails to decode is treated as a miss

Design Decisions:
    - Cluster first when nodes are configured, single node as fallback, no cache as
      the last resort (requests still succeed, only caching is lost)
    - Reconnects use redis-py's Retry with ExponentialBackoff, bounded by attempts
"""

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from autoregistry.config import Settings

logger = logging.getLogger(__name__)

_CACHE_FAILURES = (RedisError, OSError, ValueError, TypeError)

_DELETE_BATCH = 500


def _retry_policy(settings: Settings) -> Retry:
    return Retry(
        ExponentialBackoff(
            cap=settings.cache_backoff_cap_seconds,
            base=settings.cache_backoff_base_seconds,
        ),
        settings.cache_retry_attempts,
    )


class CacheClient:
    """Namespaced cache operations over an optional async redis client."""

    def __init__(self, client: Any = None, namespace: str = "api", clustered: bool = False):
        self._client = client
        self.namespace = namespace
        self.clustered = clustered

    @property
    def available(self) -> bool:
        return self._client is not None

    def build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    # ─── Lifecycle ───────────────────────────────────────────────

    @classmethod
    async def connect(cls, settings: Settings) -> "CacheClient":
        """Connect per settings; returns a disabled client when nothing answers."""
        namespace = settings.cache_namespace
        if not settings.cache_enabled:
            logger.info("Cache disabled by configuration")
            return cls(None, namespace)

        nodes = settings.cluster_nodes
        if nodes:
            cluster = RedisCluster(
                startup_nodes=[ClusterNode(host, port) for host, port in nodes],
                password=settings.redis_password,
                decode_responses=True,
                retry=_retry_policy(settings),
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
                socket_timeout=settings.cache_socket_timeout_seconds,
                socket_connect_timeout=settings.cache_socket_timeout_seconds,
            )
            if await cls._probe(cluster, f"cluster ({len(nodes)} nodes)"):
                return cls(cluster, namespace, clustered=True)
            logger.warning("Falling back to single-node cache")

        single = Redis.from_url(
            settings.redis_url,
            password=settings.redis_password,
            decode_responses=True,
            retry=_retry_policy(settings),
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
            socket_timeout=settings.cache_socket_timeout_seconds,
            socket_connect_timeout=settings.cache_socket_timeout_seconds,
        )
        if await cls._probe(single, settings.redis_url):
            return cls(single, namespace)

        logger.warning("Cache unreachable, continuing without cache")
        return cls(None, namespace)

    @staticmethod
    async def _probe(client: Any, label: str) -> bool:
        try:
            await client.ping()
        except _CACHE_FAILURES as e:
            logger.warning(f"Cache connection failed ({label}): {e}")
            try:
                await client.aclose()
            except _CACHE_FAILURES as close_error:
                logger.debug(f"Cache close after failed probe: {close_error}")
            return False
        logger.info(f"Cache connected: {label}")
        return True

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            await client.aclose()
        except _CACHE_FAILURES as e:
            logger.warning(f"Cache close failed: {e}")

    # ─── Operations ──────────────────────────────────────────────

    async def get(self, key: str) -> Any | None:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(self.build_key(key))
            return json.loads(raw) if raw is not None else None
        except _CACHE_FAILURES as e:
            logger.warning(f"Cache get failed: {e}", extra={"cache_key": key})
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> bool:
        if self._client is None:
            return False
        try:
            payload = json.dumps(value, default=str)
            await self._client.set(self.build_key(key), payload, ex=ttl_seconds)
            return True
        except _CACHE_FAILURES as e:
            logger.warning(f"Cache set failed: {e}", extra={"cache_key": key})
            return False

    async def delete(self, key: str) -> int:
        if self._client is None:
            return 0
        try:
            return int(await self._client.delete(self.build_key(key)))
        except _CACHE_FAILURES as e:
            logger.warning(f"Cache delete failed: {e}", extra={"cache_key": key})
            return 0

    async def invalidate(self, pattern: str) -> int:
        """Delete every key matching "{namespace}:{pattern}". Returns keys removed."""
        if self._client is None:
            return 0
        try:
            removed = 0
            batch: list[str] = []
            async for key in self._client.scan_iter(match=self.build_key(pattern)):
                batch.append(key)
                if len(batch) >= _DELETE_BATCH:
                    removed += await self._delete_many(batch)
                    batch = []
            if batch:
                removed += await self._delete_many(batch)
            return removed
        except _CACHE_FAILURES as e:
            logger.warning(f"Cache invalidation failed: {e}", extra={"cache_key": pattern})
            return 0

    async def _delete_many(self, keys: list[str]) -> int:
        if not self.clustered:
            return int(await self._client.delete(*keys))
        # Keys in a cluster may hash to different slots
        removed = 0
        for key in keys:
            removed += int(await self._client.delete(key))
        return removed

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except _CACHE_FAILURES as e:
            logger.error(f"Cache health check failed: {e}")
            return False
