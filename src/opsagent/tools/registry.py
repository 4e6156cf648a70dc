"""
Tool Registry and Execution Sandbox.

Holds named, schema-validated async callables and executes one by name
with a timeout. Argument schemas are pydantic models, so each tool
validates its own input and advertises a JSON Schema to the LLM.

Timeouts stop the *wait*, not the work: a tool that overruns is left
running in the background and its eventual outcome is only logged.

Usage:
    class EchoInput(BaseModel):
        text: str

    async def echo(args: EchoInput) -> str:
        return args.text

    registry = ToolRegistry().register(
        Tool(name="echo", description="Echo text", input_model=EchoInput, handler=echo)
    )
    result = await registry.execute("echo", {"text": "hi"}, timeout=5.0)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Optional

from pydantic import BaseModel, ValidationError

from ..domain.entities import ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT = 30.0


# ============================================
# Errors
# ============================================


class ToolError(Exception):
    """Base class for tool sandbox failures."""


class ToolNotFoundError(ToolError):
    """Raised when a tool name is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name


class ToolValidationError(ToolError):
    """Raised when tool arguments fail schema validation."""

    def __init__(self, name: str, error: ValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in error.errors()
        )
        super().__init__(f'Invalid arguments for tool "{name}": {details}')
        self.name = name
        self.errors = error.errors()


class ToolTimeoutError(ToolError):
    """Raised when a tool does not settle within its timeout."""

    def __init__(self, name: str, timeout: float):
        super().__init__(f'Tool "{name}" timed out after {int(timeout * 1000)}ms')
        self.name = name
        self.timeout = timeout


# ============================================
# Tool
# ============================================


@dataclass(frozen=True)
class Tool:
    """A named callable with a declared input schema.

    Attributes:
        name: Unique tool name
        description: Description shown to the LLM
        input_model: Pydantic model describing the arguments
        handler: Coroutine function receiving a validated input_model instance
    """

    name: str
    description: str
    input_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]

    def validate(self, raw: Any) -> BaseModel:
        """Validate raw arguments into the tool's input model.

        Raises:
            ToolValidationError: If the arguments do not match the schema
        """
        try:
            return self.input_model.model_validate(raw if raw is not None else {})
        except ValidationError as e:
            raise ToolValidationError(self.name, e) from e

    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema()

    async def execute(self, validated: BaseModel) -> Any:
        return await self.handler(validated)

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema(),
        )


# ============================================
# Registry
# ============================================


class ToolRegistry:
    """Registry of agent tools keyed by name.

    Registration order is preserved; re-registering a name replaces the
    tool in place.
    """

    def __init__(self, tools: Optional[list[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        # Tasks that outlived their timeout; held until they settle
        self._abandoned: set[asyncio.Task] = set()
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> "ToolRegistry":
        """Register a tool, replacing any tool with the same name.

        Returns:
            The registry itself, for chaining
        """
        if tool.name in self._tools:
            logger.debug(f"Replacing registered tool: {tool.name}")
        self._tools[tool.name] = tool
        return self

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> list[str]:
        """Registered tool names in registration order."""
        return list(self._tools)

    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    def to_definitions(self) -> list[ToolDefinition]:
        """Project the registry to the definitions sent to the LLM."""
        return [tool.to_definition() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    @property
    def pending_count(self) -> int:
        """Number of timed-out tool calls still running."""
        return len(self._abandoned)

    async def execute(
        self,
        name: str,
        raw_args: Any,
        timeout: float = DEFAULT_TOOL_TIMEOUT,
    ) -> Any:
        """Validate arguments and run a tool, waiting at most ``timeout`` seconds.

        Args:
            name: Tool name
            raw_args: Unvalidated arguments from the LLM
            timeout: Seconds to wait for the tool to settle

        Returns:
            The tool's return value

        Raises:
            ToolNotFoundError: If no tool has this name
            ToolValidationError: If the arguments fail validation
            ToolTimeoutError: If the tool does not settle in time
            Exception: Whatever the tool itself raised
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        validated = tool.validate(raw_args)
        task = asyncio.ensure_future(tool.execute(validated))

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            logger.warning(f"Tool {name} timed out after {timeout}s, leaving it running")
            self._abandoned.add(task)
            task.add_done_callback(self._make_abandoned_callback(name))
            raise ToolTimeoutError(name, timeout)

        return task.result()

    def _make_abandoned_callback(self, name: str) -> Callable[[asyncio.Task], None]:
        def _settled(task: asyncio.Task) -> None:
            self._abandoned.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.info(f"Abandoned tool {name} failed after timeout: {error}")
            else:
                logger.debug(f"Abandoned tool {name} completed after timeout")

        return _settled
