"""Redis-backed session store.

Each session is one Redis hash (``<prefix><session_id>``) whose fields are
the session keys. Shared across instances, so suitable for multi-process
deployments.
"""

import logging
from typing import Any, Dict, Optional

import redis

from reqsession.core.errors import StoreError
from reqsession.stores.base import Store

logger = logging.getLogger(__name__)


class RedisStore(Store):
    def __init__(self, client: "redis.Redis", prefix: str = "reqsession:", ttl_seconds: Optional[int] = None):
        """
        Args:
            client: A redis-py client created with ``decode_responses=False``
            prefix: Namespace prepended to every session hash name
            ttl_seconds: Idle lifetime of a session; every write refreshes it
        """
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        prefix: str = "reqsession:",
        ttl_seconds: Optional[int] = None,
        socket_timeout: float = 2.0,
    ) -> "RedisStore":
        if not redis_url.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(f"Invalid Redis URL format: {redis_url}")
        client = redis.Redis.from_url(
            redis_url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, prefix=prefix, ttl_seconds=ttl_seconds)

    def _name(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def read(self, session_id: str, key: str) -> Optional[bytes]:
        try:
            return self.client.hget(self._name(session_id), key)
        except redis.RedisError as e:
            logger.error(f"Redis read failed: {e}")
            raise StoreError(f"Redis read failed: {e}") from e

    def write(self, session_id: str, key: str, data: bytes) -> None:
        name = self._name(session_id)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(name, key, data)
            if self.ttl_seconds is not None:
                pipe.expire(name, self.ttl_seconds)
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis write failed: {e}")
            raise StoreError(f"Redis write failed: {e}") from e

    def delete(self, session_id: str, key: str) -> None:
        try:
            self.client.hdel(self._name(session_id), key)
        except redis.RedisError as e:
            logger.error(f"Redis delete failed: {e}")
            raise StoreError(f"Redis delete failed: {e}") from e

    def read_all(self, session_id: str) -> Dict[str, bytes]:
        try:
            raw = self.client.hgetall(self._name(session_id))
        except redis.RedisError as e:
            logger.error(f"Redis read_all failed: {e}")
            raise StoreError(f"Redis read failed: {e}") from e
        return {
            (field.decode("utf-8") if isinstance(field, bytes) else field): value
            for field, value in raw.items()
        }

    def take(self, session_id: str, key: str) -> Optional[bytes]:
        name = self._name(session_id)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hget(name, key)
            pipe.hdel(name, key)
            data, _ = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis take failed: {e}")
            raise StoreError(f"Redis take failed: {e}") from e
        return data

    def clear(self, session_id: str) -> None:
        try:
            self.client.delete(self._name(session_id))
        except redis.RedisError as e:
            logger.error(f"Redis clear failed: {e}")
            raise StoreError(f"Redis clear failed: {e}") from e

    def health(self) -> Dict[str, Any]:
        try:
            self.client.ping()
            return {
                "status": "healthy",
                "type": "redis",
                "message": "Redis connection successful",
            }
        except redis.RedisError as e:
            logger.warning("Redis health check failed: %s", str(e))
            return {
                "status": "unhealthy",
                "type": "redis",
                "message": f"Redis connection failed: {str(e)}",
            }
