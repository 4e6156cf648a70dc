"""
Ops Agent.

An LLM-backed agent runtime: drives a bounded multi-turn conversation with
a language model, executes the tool calls it requests, and returns a final
answer or a typed failure.

Architecture:
- Domain: Core entities, errors and port interfaces
- Tools: Schema-validated tool registry with a timeout sandbox
- Orchestrator: Agent loop state machine and concurrent tool dispatch
- Security: Authentication, RBAC tool filtering, rate limiting
- Session: Conversation history stores (memory, Redis) and sweeper
- Providers: LLM clients (Claude, GPT, Ollama)
- API: OpenAI-compatible FastAPI surface
"""

__version__ = "1.0.0"

from .domain import (
    AgentError,
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
)
from .orchestrator import AgentConfig, AgentOrchestrator, run_agent
from .tools import Tool, ToolRegistry

__all__ = [
    "__version__",
    # Domain
    "AgentError",
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
    # Orchestrator
    "AgentConfig",
    "AgentOrchestrator",
    "run_agent",
    # Tools
    "Tool",
    "ToolRegistry",
]
