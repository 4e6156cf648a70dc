"""Domain entities and port interfaces for the ops agent."""

from .entities import (
    AgentResult,
    ErrorCode,
    LLMResponse,
    Message,
    MessageRole,
    SessionEntry,
    StopReason,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    ToolResult,
    ToolUsage,
)
from .errors import AgentError
from .ports import DeltaCallback, LLMClient, SessionStore, ToolHandler

__all__ = [
    # Entities
    "AgentResult",
    "ErrorCode",
    "LLMResponse",
    "Message",
    "MessageRole",
    "SessionEntry",
    "StopReason",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "ToolUsage",
    # Errors
    "AgentError",
    # Ports
    "DeltaCallback",
    "LLMClient",
    "SessionStore",
    "ToolHandler",
]
