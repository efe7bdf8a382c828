"""Session storage backends"""

import logging

from reqsession.core.config import SessionSettings
from reqsession.stores.base import Store
from reqsession.stores.memory import MemoryStore

logger = logging.getLogger(__name__)


def create_store(settings: SessionSettings) -> Store:
    """
    Create the storage backend selected by ``settings.backend``.

    The database and Redis backends are imported lazily so their drivers
    are only loaded when used.

    Raises:
        ValueError: If the Redis backend is selected without a Redis URL
    """
    ttl = settings.effective_ttl

    if settings.backend == "database":
        from reqsession.stores.database import DatabaseStore

        logger.info("Using database session store (%s)", settings.database_url.split("://")[0])
        return DatabaseStore.from_url(settings.database_url, ttl_seconds=ttl)

    if settings.backend == "redis":
        if not settings.redis_url:
            raise ValueError("SESSION_REDIS_URL must be set when backend is 'redis'")
        from reqsession.stores.redis_store import RedisStore

        logger.info("Using Redis session store")
        return RedisStore.from_url(
            settings.redis_url,
            prefix=settings.redis_prefix,
            ttl_seconds=ttl,
            socket_timeout=settings.redis_socket_timeout,
        )

    logger.info("Using in-memory session store")
    return MemoryStore(ttl_seconds=ttl)


__all__ = [
    "MemoryStore",
    "Store",
    "create_store",
]
