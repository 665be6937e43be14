from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from tokensmith.logging import get_logger
from tokensmith.storage.errors import StoreUnavailable

logger = get_logger(__name__)


class RedisCredentialStore:
    """Redis-backed credential store shared by every service instance."""

    DEFAULT_OPERATION_TIMEOUT = 5.0  # seconds

    # Atomic compare-and-delete: only the caller holding the current value wins.
    _COMPARE_AND_DELETE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

    def __init__(
        self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT
    ):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._compare_and_delete = self.client.register_script(
            self._COMPARE_AND_DELETE_SCRIPT
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # Short-lived synchronous client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @staticmethod
    def _unavailable(op: str, key: Optional[str], exc: Exception) -> StoreUnavailable:
        logger.error(
            "store_unavailable",
            backend="redis",
            op=op,
            key_kind=key.rsplit(":", 2)[-2] if key and key.count(":") >= 2 else None,
            error_type=type(exc).__name__,
        )
        return StoreUnavailable("credential store unavailable", {"op": op})

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.client.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            raise self._unavailable("put", key, exc) from exc

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise self._unavailable("get", key, exc) from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as exc:
            raise self._unavailable("delete", key, exc) from exc

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        try:
            deleted = await self._compare_and_delete(keys=[key], args=[expected])
        except RedisError as exc:
            raise self._unavailable("compare_and_delete", key, exc) from exc
        return bool(int(deleted or 0))

    async def ping(self) -> None:
        try:
            await self.client.ping()
        except RedisError as exc:
            raise self._unavailable("ping", None, exc) from exc

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
