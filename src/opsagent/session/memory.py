"""In-process session store."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..domain.entities import SessionEntry
from ..domain.ports import SessionStore

logger = logging.getLogger(__name__)


class MemorySessionStore(SessionStore):
    """Session store backed by a dict.

    Entries live until ``cleanup`` evicts them or the process exits.
    Suitable for single-instance deployments and tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._sessions: dict[str, SessionEntry] = {}
        self._clock = clock

    async def get(self, session_id: str) -> Optional[SessionEntry]:
        return self._sessions.get(session_id)

    async def set(self, session_id: str, entry: SessionEntry) -> None:
        self._sessions[session_id] = entry

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def cleanup(self, max_age: float) -> int:
        cutoff = self._clock() - max_age
        stale = [sid for sid, entry in self._sessions.items() if entry.last_activity < cutoff]
        for session_id in stale:
            del self._sessions[session_id]
        if stale:
            logger.info(f"Evicted {len(stale)} idle sessions ({len(self._sessions)} remaining)")
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)
