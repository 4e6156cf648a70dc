"""Assemble the default agent configuration from settings."""

from __future__ import annotations

from typing import Optional

from .domain.ports import LLMClient
from .orchestrator.agent import AgentConfig
from .providers.factory import create_llm_client
from .settings import AgentSettings
from .tools.builtin import create_default_registry
from .tools.registry import ToolRegistry

SYSTEM_PROMPT = """You are an IT Operations assistant.

Your role is to help users with:
- Troubleshooting technical issues
- Checking system status
- Running diagnostics and quick calculations

Guidelines:
- Use the available tools to gather information before answering
- Be concise and accurate in your responses
- If you don't know something, say so rather than guessing
- When reporting tool results, summarize the key findings
- Cite the source URL when using information fetched from the web

Available tools will be provided to you. Use them when appropriate to answer user questions."""


def create_agent_config(
    settings: AgentSettings,
    llm: Optional[LLMClient] = None,
    tools: Optional[ToolRegistry] = None,
) -> AgentConfig:
    """Build the base AgentConfig (unfiltered tool registry).

    Args:
        settings: Resolved settings
        llm: Override the LLM client (defaults to the configured provider)
        tools: Override the tool registry (defaults to the built-in tools)
    """
    return AgentConfig(
        llm=llm if llm is not None else create_llm_client(settings),
        tools=tools if tools is not None else create_default_registry(),
        system_prompt=SYSTEM_PROMPT,
        max_iterations=settings.max_iterations,
        verbose=settings.verbose,
        tool_timeout=settings.tool_timeout,
    )
