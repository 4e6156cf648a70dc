"""
Port interfaces for the ops agent.

These define the contracts that adapters must implement. LLM providers
are structural (any object with a matching ``chat`` coroutine works);
session stores subclass the abstract base.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Union

if TYPE_CHECKING:
    from .entities import LLMResponse, Message, SessionEntry, ToolDefinition


# Incremental text callback; may be a plain function or a coroutine function
DeltaCallback = Callable[[str], Union[None, Awaitable[None]]]


# ============================================
# LLM Client Interface
# ============================================


class LLMClient(Protocol):
    """Interface for LLM providers (Claude, GPT, Ollama, etc.).

    Implementations handle the specifics of each vendor API and return a
    complete response for one turn. Failures should carry a
    ``status_code`` attribute so the agent loop can classify them.
    """

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> LLMResponse:
        """Run one turn of the conversation.

        Args:
            messages: Full conversation, system prompt first
            tools: Tool definitions the model may call
            on_delta: Called with each text fragment as it is produced

        Returns:
            The provider's response for this turn
        """
        ...


# ============================================
# Session Store Interface
# ============================================


class SessionStore(ABC):
    """Interface for conversation history storage keyed by session id."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionEntry]:
        """Return the entry for a session, or None if absent."""

    @abstractmethod
    async def set(self, session_id: str, entry: SessionEntry) -> None:
        """Store (or replace) the entry for a session."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session. Missing sessions are ignored."""

    @abstractmethod
    async def cleanup(self, max_age: float) -> int:
        """Evict sessions idle for longer than max_age seconds.

        Returns:
            Number of sessions evicted
        """

    async def close(self) -> None:
        """Release backend resources."""
        return None


# Tool handler: takes validated input, returns any JSON-serializable value
ToolHandler = Callable[[Any], Awaitable[Any]]
