"""
Domain entities for the ops agent.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures passed between the agent loop,
the tool sandbox, the LLM providers and the session store.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# ============================================
# Message Types
# ============================================


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """A single message in a conversation.

    Attributes:
        role: Message role (system, user, assistant)
        content: Message text content
    """

    role: MessageRole
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(role=MessageRole(data["role"]), content=data.get("content") or "")

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)


# ============================================
# Tool Types
# ============================================


@dataclass
class ToolDefinition:
    """Definition of a tool as advertised to the LLM provider.

    Attributes:
        name: Tool name (e.g., 'fetch_url')
        description: Human-readable description
        input_schema: JSON Schema for the tool arguments
    """

    name: str
    description: str
    input_schema: dict[str, Any]

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolCall:
    """A tool call requested by the LLM in a single turn.

    Attributes:
        name: Tool name being called
        arguments: Arguments passed to the tool
        id: Provider-assigned identifier (for correlation)
    """

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class ToolResult:
    """Outcome of one tool call, fed back to the provider.

    Always produced, even when the tool failed.

    Attributes:
        tool_call_id: ID of the tool call this result belongs to
        content: JSON-serialized result (or error object)
        is_error: True if the call failed
    """

    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass
class ToolUsage:
    """Record of a tool invocation made during an agent run."""

    name: str
    input: dict[str, Any]
    output: Any


# ============================================
# LLM Response Types
# ============================================


class StopReason(str, Enum):
    """Why the provider ended a turn."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"


@dataclass
class TokenUsage:
    """Input/output token counts."""

    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class LLMResponse:
    """A complete (non-streaming) response from one provider turn.

    Attributes:
        content: Text produced by the model, or None
        tool_calls: Tool calls requested this turn (may be empty)
        stop_reason: Provider's reason for ending the turn
        usage: Token usage for the turn, when reported
    """

    content: Optional[str]
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: Optional[TokenUsage] = None


# ============================================
# Agent Results
# ============================================


class ErrorCode(str, Enum):
    """Stable, caller-visible error codes."""

    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    TOOL_ERROR = "TOOL_ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass
class AgentResult:
    """Terminal artifact of one agent loop run.

    Attributes:
        response: Final answer text (empty string when the model gave none)
        tools_used: Tool invocations in the order they were dispatched
        iterations: Number of provider turns taken
        usage: Token usage accumulated over every turn
    """

    response: str
    tools_used: list[ToolUsage] = field(default_factory=list)
    iterations: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)


# ============================================
# Sessions
# ============================================


@dataclass
class SessionEntry:
    """Conversation history stored under one session id.

    Entries only grow: new turns are appended and last_activity is bumped.

    Attributes:
        messages: Conversation history (user and assistant messages)
        last_activity: Unix timestamp of the last append
    """

    messages: list[Message] = field(default_factory=list)
    last_activity: float = field(default_factory=time.time)

    def append_turn(self, user: str, assistant: str, now: Optional[float] = None) -> None:
        """Append one user/assistant exchange and bump last_activity."""
        self.messages.append(Message.user(user))
        self.messages.append(Message.assistant(assistant))
        self.last_activity = time.time() if now is None else now

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "last_activity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionEntry":
        return cls(
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            last_activity=float(data["last_activity"]),
        )
