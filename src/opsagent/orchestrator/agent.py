"""
Agent Orchestrator.

Runs the bounded request/response/tool-dispatch cycle around an LLM
client:

- Seeds the conversation with the system prompt, prior session history and
  the new input (system-role entries from callers are dropped)
- Calls the provider, accumulating token usage every turn
- Dispatches all requested tool calls concurrently and feeds the results
  back as one user message
- Stops on a final answer, or fails with MAX_ITERATIONS once the turn
  budget is spent

Provider failures are classified into RATE_LIMITED, API_ERROR or UNKNOWN
and raised as AgentError. Nothing is retried here; retries belong to the
provider client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..domain.entities import (
    AgentResult,
    ErrorCode,
    Message,
    MessageRole,
    StopReason,
    TokenUsage,
    ToolUsage,
)
from ..domain.errors import AgentError
from ..domain.ports import DeltaCallback, LLMClient
from ..tools.registry import DEFAULT_TOOL_TIMEOUT, ToolRegistry
from ..tracing import get_tracer
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10


@dataclass(frozen=True)
class AgentConfig:
    """Configuration for one agent run.

    Attributes:
        llm: LLM client used for every turn
        tools: Tool registry visible to the model (possibly RBAC-filtered)
        system_prompt: System prompt placed first in the conversation
        max_iterations: Maximum provider turns before failing
        verbose: Log per-iteration progress at INFO instead of DEBUG
        tool_timeout: Per-tool-call timeout in seconds
    """

    llm: LLMClient
    tools: ToolRegistry
    system_prompt: str
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    verbose: bool = False
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT


class LoopState(str, Enum):
    """States of the agent loop."""

    AWAITING_PROVIDER = "awaiting_provider"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AgentRun:
    """Mutable bookkeeping for a single run."""

    messages: list[Message]
    state: LoopState = LoopState.AWAITING_PROVIDER
    iterations: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    tools_used: list[ToolUsage] = field(default_factory=list)


def _status_code(error: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction from a provider exception."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_provider_error(error: BaseException) -> AgentError:
    """Map a provider-call failure onto a typed AgentError."""
    if isinstance(error, AgentError):
        return error

    status = _status_code(error)
    if status == 429:
        return AgentError(ErrorCode.RATE_LIMITED, "Rate limit exceeded", error)
    if status is not None and status >= 500:
        return AgentError(ErrorCode.API_ERROR, f"LLM provider error: {status}", error)
    return AgentError(ErrorCode.UNKNOWN, str(error) or type(error).__name__, error)


def build_conversation(
    system_prompt: str,
    input_messages: list[Message],
    previous_messages: Optional[list[Message]] = None,
) -> list[Message]:
    """System prompt, then prior history, then new input (no caller system messages)."""
    messages = [Message.system(system_prompt)]
    for source in (previous_messages or [], input_messages):
        messages.extend(m for m in source if m.role != MessageRole.SYSTEM)
    return messages


class AgentOrchestrator:
    """Drives the agent loop for a given configuration.

    Usage:
        orchestrator = AgentOrchestrator(config)
        result = await orchestrator.run([Message.user("What time is it in Berlin?")])
        print(result.response, result.iterations)
    """

    def __init__(self, config: AgentConfig):
        """Initialize the orchestrator.

        Args:
            config: Agent configuration
        """
        self.config = config
        self.tool_executor = ToolExecutor(config.tools, timeout=config.tool_timeout)
        self._log_level = logging.INFO if config.verbose else logging.DEBUG

    def _log(self, message: str) -> None:
        logger.log(self._log_level, message)

    def _transition(self, run: AgentRun, state: LoopState) -> None:
        self._log(f"Agent state {run.state.value} -> {state.value} (iteration {run.iterations})")
        run.state = state

    async def run(
        self,
        input_messages: list[Message],
        previous_messages: Optional[list[Message]] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> AgentResult:
        """Run the loop to completion.

        Args:
            input_messages: New messages for this request
            previous_messages: Session history from earlier requests
            on_delta: Receives incremental text from the provider

        Returns:
            AgentResult with the final response

        Raises:
            AgentError: On provider failure or when max_iterations is exhausted
        """
        config = self.config
        run = AgentRun(
            messages=build_conversation(config.system_prompt, input_messages, previous_messages)
        )
        tool_definitions = config.tools.to_definitions()
        tracer = get_tracer()

        while run.iterations < config.max_iterations:
            run.iterations += 1
            self._log(f"--- Iteration {run.iterations} ---")

            try:
                async with tracer.span("llm.chat", iteration=run.iterations):
                    response = await config.llm.chat(
                        run.messages, tool_definitions, on_delta=on_delta
                    )
            except Exception as e:
                self._transition(run, LoopState.FAILED)
                error = classify_provider_error(e)
                logger.error(f"LLM call failed ({error.code.value}): {error.message}")
                raise error from e

            if response.usage is not None:
                run.usage.add(response.usage)

            self._log(f"Stop reason: {response.stop_reason.value}")
            if response.content:
                self._log(f"Content: {response.content[:100]}")

            if response.stop_reason != StopReason.TOOL_USE or not response.tool_calls:
                self._transition(run, LoopState.DONE)
                return AgentResult(
                    response=response.content or "",
                    tools_used=run.tools_used,
                    iterations=run.iterations,
                    usage=run.usage,
                )

            if response.content:
                run.messages.append(Message.assistant(response.content))

            self._transition(run, LoopState.DISPATCHING_TOOLS)
            outcomes = await self.tool_executor.execute_tool_calls(response.tool_calls)

            for outcome in outcomes:
                run.tools_used.append(outcome.usage)
                self._log(f"Tool {outcome.usage.name}: {outcome.result.content[:200]}")

            run.messages.append(
                Message.user("\n\n".join(outcome.summary_line() for outcome in outcomes))
            )
            self._transition(run, LoopState.AWAITING_PROVIDER)

        self._transition(run, LoopState.FAILED)
        raise AgentError(
            ErrorCode.MAX_ITERATIONS,
            f"Agent exceeded max iterations ({config.max_iterations})",
        )


async def run_agent(
    config: AgentConfig,
    input_messages: list[Message],
    previous_messages: Optional[list[Message]] = None,
    on_delta: Optional[DeltaCallback] = None,
) -> AgentResult:
    """Run the agent loop once. See AgentOrchestrator.run."""
    return await AgentOrchestrator(config).run(input_messages, previous_messages, on_delta)
