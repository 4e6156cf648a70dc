"""Tool registry, execution sandbox and built-in tools."""

from .builtin import (
    CALCULATOR_TOOL,
    FETCH_URL_TOOL,
    GET_CURRENT_TIME_TOOL,
    create_default_registry,
)
from .registry import (
    DEFAULT_TOOL_TIMEOUT,
    Tool,
    ToolError,
    ToolNotFoundError,
    ToolRegistry,
    ToolTimeoutError,
    ToolValidationError,
)

__all__ = [
    "CALCULATOR_TOOL",
    "DEFAULT_TOOL_TIMEOUT",
    "FETCH_URL_TOOL",
    "GET_CURRENT_TIME_TOOL",
    "Tool",
    "ToolError",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolTimeoutError",
    "ToolValidationError",
    "create_default_registry",
]
