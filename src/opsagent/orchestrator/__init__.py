"""Agent orchestration: the loop state machine and concurrent tool dispatch."""

from .agent import (
    AgentConfig,
    AgentOrchestrator,
    LoopState,
    build_conversation,
    classify_provider_error,
    run_agent,
)
from .tool_executor import ToolExecutor, ToolOutcome

__all__ = [
    "AgentConfig",
    "AgentOrchestrator",
    "LoopState",
    "ToolExecutor",
    "ToolOutcome",
    "build_conversation",
    "classify_provider_error",
    "run_agent",
]
