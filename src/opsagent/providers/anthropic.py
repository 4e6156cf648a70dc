"""
Anthropic Claude LLM Provider.

Implements the LLMClient contract for Anthropic's Messages API. Streams
when a delta callback is supplied, otherwise makes a single request.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..domain.entities import (
    LLMResponse,
    Message,
    MessageRole,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from ..domain.ports import DeltaCallback
from .base import LLMProviderConfig, LLMProviderError, emit_delta, map_stop_reason

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring anthropic if not used
try:
    import anthropic
    from anthropic import AsyncAnthropic

    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False
    anthropic = None
    AsyncAnthropic = None


class AnthropicClient:
    """Anthropic Claude client.

    Usage:
        config = LLMProviderConfig(
            api_key="sk-ant-...",
            model="claude-sonnet-4-5-20250929",
        )
        client = AnthropicClient(config)
        response = await client.chat(messages, tools)
    """

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    def __init__(self, config: LLMProviderConfig):
        """Initialize the Anthropic client.

        Args:
            config: Provider configuration

        Raises:
            ImportError: If anthropic package is not installed
        """
        if not ANTHROPIC_AVAILABLE:
            raise ImportError(
                "anthropic package is required for AnthropicClient. "
                "Install with: pip install anthropic"
            )

        self.config = config
        self.client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def model_name(self) -> str:
        return self.config.model

    def _format_messages_for_api(
        self, messages: list[Message]
    ) -> tuple[Optional[str], list[dict[str, Any]]]:
        """Split out system messages; Anthropic takes them as a parameter."""
        system_parts = []
        api_messages = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
            else:
                api_messages.append({"role": msg.role.value, "content": msg.content})
        system = "\n\n".join(system_parts) if system_parts else None
        return system, api_messages

    def _build_request(
        self, messages: list[Message], tools: Optional[list[ToolDefinition]]
    ) -> dict[str, Any]:
        system, api_messages = self._format_messages_for_api(messages)
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "messages": api_messages,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [tool.to_anthropic_format() for tool in tools]
        if self.config.temperature is not None:
            kwargs["temperature"] = self.config.temperature
        return kwargs

    @staticmethod
    def _parse_message(message: Any) -> LLMResponse:
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in message.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )

        usage = None
        if getattr(message, "usage", None) is not None:
            usage = TokenUsage(
                input_tokens=message.usage.input_tokens,
                output_tokens=message.usage.output_tokens,
            )

        return LLMResponse(
            content="".join(text_parts) or None,
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(message.stop_reason, has_tool_calls=False),
            usage=usage,
        )

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> LLMResponse:
        """Run one turn against Claude.

        Args:
            messages: Conversation, system prompt first
            tools: Available tools
            on_delta: Receives text fragments; enables streaming

        Returns:
            The parsed response

        Raises:
            LLMProviderError: On API, timeout or connection errors
        """
        kwargs = self._build_request(messages, tools)

        try:
            if on_delta is None:
                message = await self.client.messages.create(**kwargs)
            else:
                async with self.client.messages.stream(**kwargs) as stream:
                    async for text in stream.text_stream:
                        await emit_delta(on_delta, text)
                    message = await stream.get_final_message()

        except anthropic.APIStatusError as e:
            if e.status_code == 429:
                logger.warning(f"Rate limited by Anthropic: {e}")
            else:
                logger.error(f"Anthropic API error {e.status_code}: {e}")
            raise LLMProviderError(
                f"Anthropic API error: {e.status_code}", status_code=e.status_code, original_error=e
            ) from e
        except anthropic.APITimeoutError as e:
            logger.error(f"Anthropic API timeout: {e}")
            raise LLMProviderError(f"Request timed out: {e}", original_error=e) from e
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise LLMProviderError(f"API error: {e}", original_error=e) from e

        return self._parse_message(message)

    async def close(self) -> None:
        await self.client.close()
