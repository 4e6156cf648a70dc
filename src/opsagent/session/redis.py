"""
Redis-backed session store.

Each session is stored as JSON under ``<prefix><session_id>`` with a native
expiry (default 30 minutes). Redis TTL measures "stored since", so
``cleanup`` additionally sweeps entries whose application-level
last_activity is older than the allowed age.

Environment Variables:
- REDIS_URL: Redis connection URL (default: redis://localhost:6379)
- SESSION_TTL_SECONDS: Native key expiry (default: 1800)
"""

from __future__ import annotations

import json
import logging
import time
from typing import AsyncIterator, Callable, Optional, Protocol

from ..domain.entities import SessionEntry
from ..domain.ports import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1800
DEFAULT_PREFIX = "opsagent:session:"


class IRedisClient(Protocol):
    """Protocol for the subset of redis.asyncio.Redis used here."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> None:
        ...

    async def delete(self, *keys: str) -> int:
        ...

    def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...


class RedisSessionStore(SessionStore):
    """Session store backed by Redis with native per-key expiry.

    Usage:
        client = redis.asyncio.from_url(url, decode_responses=True)
        store = RedisSessionStore(client)
    """

    def __init__(
        self,
        client: IRedisClient,
        ttl: int = DEFAULT_TTL_SECONDS,
        prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the store.

        Args:
            client: Async Redis client created with decode_responses=True
            ttl: Key expiry in seconds
            prefix: Key namespace for session entries
            clock: Time source for cleanup cutoffs
        """
        self.client = client
        self.ttl = ttl
        self.prefix = prefix
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    async def get(self, session_id: str) -> Optional[SessionEntry]:
        raw = await self.client.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return SessionEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Discarding undecodable session {session_id}: {e}")
            return None

    async def set(self, session_id: str, entry: SessionEntry) -> None:
        await self.client.set(self._key(session_id), json.dumps(entry.to_dict()), ex=self.ttl)

    async def delete(self, session_id: str) -> None:
        await self.client.delete(self._key(session_id))

    async def cleanup(self, max_age: float) -> int:
        cutoff = self._clock() - max_age
        evicted = 0

        async for key in self.client.scan_iter(match=f"{self.prefix}*"):
            raw = await self.client.get(key)
            if raw is None:
                # Expired by Redis between SCAN and GET
                continue

            try:
                last_activity = float(json.loads(raw)["last_activity"])
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping undecodable session {key}: {e}")
                continue

            if last_activity < cutoff:
                await self.client.delete(key)
                evicted += 1

        if evicted:
            logger.info(f"Evicted {evicted} idle sessions from Redis")
        return evicted

    async def close(self) -> None:
        await self.client.aclose()
