"""Session storage for conversational memory."""

from __future__ import annotations

import logging
from typing import Optional

from ..domain.ports import SessionStore
from .memory import MemorySessionStore
from .redis import DEFAULT_PREFIX, DEFAULT_TTL_SECONDS, RedisSessionStore
from .sweeper import SessionSweeper

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379"


def create_session_store(
    kind: str = "memory",
    redis_url: Optional[str] = None,
    ttl: int = DEFAULT_TTL_SECONDS,
) -> SessionStore:
    """Create a session store backend.

    Args:
        kind: "memory" or "redis"
        redis_url: Redis connection URL (redis backend only)
        ttl: Native key expiry in seconds (redis backend only)

    Raises:
        ValueError: If kind is not a known backend
    """
    if kind == "memory":
        return MemorySessionStore()

    if kind == "redis":
        # Imported here so memory-only deployments never touch redis
        import redis.asyncio as redis

        url = redis_url or DEFAULT_REDIS_URL
        client = redis.from_url(url, decode_responses=True)
        logger.info("Using Redis session store")
        return RedisSessionStore(client, ttl=ttl)

    raise ValueError(f"Unknown session store type: {kind!r} (expected 'memory' or 'redis')")


__all__ = [
    "DEFAULT_PREFIX",
    "DEFAULT_TTL_SECONDS",
    "MemorySessionStore",
    "RedisSessionStore",
    "SessionStore",
    "SessionSweeper",
    "create_session_store",
]
