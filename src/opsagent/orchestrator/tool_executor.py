"""
Tool Executor.

Runs the tool calls of one provider turn against a ToolRegistry. All calls
are dispatched concurrently and every call settles into data: a failure
(unknown tool, bad arguments, timeout, or an exception in the tool)
becomes ``{"error": message}`` instead of propagating, so one bad tool never
aborts its siblings.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from ..domain.entities import ToolCall, ToolResult, ToolUsage
from ..tools.registry import DEFAULT_TOOL_TIMEOUT, ToolRegistry
from ..tracing import get_tracer

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Result of one dispatched tool call."""

    usage: ToolUsage
    result: ToolResult

    def summary_line(self) -> str:
        return f'Tool "{self.usage.name}" returned: {self.result.content}'


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return str(value)


def serialize_tool_output(value: Any) -> str:
    return json.dumps(value, default=_json_default, ensure_ascii=False)


class ToolExecutor:
    """Executes tool calls concurrently with per-call isolation.

    Usage:
        executor = ToolExecutor(tool_registry, timeout=30.0)
        outcomes = await executor.execute_tool_calls(response.tool_calls)

    Outcomes are returned in the order the calls were requested.
    """

    def __init__(self, tool_registry: ToolRegistry, timeout: float = DEFAULT_TOOL_TIMEOUT):
        """Initialize the tool executor.

        Args:
            tool_registry: Registry the calls are resolved against
            timeout: Per-call timeout in seconds
        """
        self.tools = tool_registry
        self.timeout = timeout

    async def execute_tool_call(self, tool_call: ToolCall) -> ToolOutcome:
        """Execute one tool call; never raises (except on cancellation)."""
        logger.debug(f"Executing tool: {tool_call.name}({tool_call.arguments})")

        is_error = False
        async with get_tracer().span("tool.execute", tool=tool_call.name) as span:
            try:
                output = await self.tools.execute(
                    tool_call.name, tool_call.arguments, timeout=self.timeout
                )
                content = serialize_tool_output(output)
            except Exception as e:
                logger.warning(f"Tool {tool_call.name} failed: {e}")
                is_error = True
                output = {"error": str(e)}
                content = serialize_tool_output(output)
                span.error = str(e)

        logger.debug(f"Tool {tool_call.name} result: {content[:200]}")

        return ToolOutcome(
            usage=ToolUsage(name=tool_call.name, input=tool_call.arguments, output=output),
            result=ToolResult(tool_call_id=tool_call.id, content=content, is_error=is_error),
        )

    async def execute_tool_calls(self, tool_calls: list[ToolCall]) -> list[ToolOutcome]:
        """Execute all tool calls concurrently and wait for every one to settle.

        Args:
            tool_calls: Calls requested by the provider in a single turn

        Returns:
            One outcome per call, in request order
        """
        return list(await asyncio.gather(*(self.execute_tool_call(tc) for tc in tool_calls)))
