"""
OpenAI GPT LLM Provider.

Implements the LLMClient contract for OpenAI's Chat Completions API
(and compatible servers via base_url). Streams when a delta callback is
supplied, assembling tool calls from indexed fragments.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..domain.entities import (
    LLMResponse,
    Message,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from ..domain.ports import DeltaCallback
from .base import (
    LLMProviderConfig,
    LLMProviderError,
    emit_delta,
    map_stop_reason,
    parse_tool_arguments,
)

logger = logging.getLogger(__name__)

# Lazy import to avoid requiring openai if not used
try:
    import openai
    from openai import AsyncOpenAI

    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False
    openai = None
    AsyncOpenAI = None


class OpenAIClient:
    """OpenAI GPT client.

    Usage:
        config = LLMProviderConfig(api_key="sk-...", model="gpt-4o")
        client = OpenAIClient(config)
        response = await client.chat(messages, tools)
    """

    DEFAULT_MODEL = "gpt-4o"

    def __init__(self, config: LLMProviderConfig):
        """Initialize the OpenAI client.

        Args:
            config: Provider configuration

        Raises:
            ImportError: If openai package is not installed
        """
        if not OPENAI_AVAILABLE:
            raise ImportError(
                "openai package is required for OpenAIClient. "
                "Install with: pip install openai"
            )

        self.config = config
        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def model_name(self) -> str:
        return self.config.model

    def _build_request(
        self, messages: list[Message], tools: Optional[list[ToolDefinition]]
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": self.config.max_tokens,
        }
        if tools:
            kwargs["tools"] = [tool.to_openai_format() for tool in tools]
            kwargs["tool_choice"] = "auto"
        if self.config.temperature is not None:
            kwargs["temperature"] = self.config.temperature
        return kwargs

    @staticmethod
    def _parse_completion(completion: Any) -> LLMResponse:
        choice = completion.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_tool_arguments(tc.function.arguments),
            )
            for tc in (message.tool_calls or [])
        ]

        usage = None
        if completion.usage is not None:
            usage = TokenUsage(
                input_tokens=completion.usage.prompt_tokens,
                output_tokens=completion.usage.completion_tokens,
            )

        return LLMResponse(
            content=message.content or None,
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(choice.finish_reason, bool(tool_calls)),
            usage=usage,
        )

    async def _stream(self, kwargs: dict[str, Any], on_delta: DeltaCallback) -> LLMResponse:
        stream = await self.client.chat.completions.create(
            **kwargs, stream=True, stream_options={"include_usage": True}
        )

        content_parts: list[str] = []
        # Tool calls arrive as fragments keyed by index
        tool_calls_in_progress: dict[int, dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        usage: Optional[TokenUsage] = None

        async for chunk in stream:
            if chunk.usage is not None:
                usage = TokenUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                )

            choice = chunk.choices[0] if chunk.choices else None
            if not choice:
                continue

            delta = choice.delta
            if delta.content:
                content_parts.append(delta.content)
                await emit_delta(on_delta, delta.content)

            for tc in delta.tool_calls or []:
                entry = tool_calls_in_progress.setdefault(
                    tc.index, {"id": tc.id or f"call_{tc.index}", "name": "", "arguments": ""}
                )
                if tc.function and tc.function.name:
                    entry["name"] = tc.function.name
                if tc.function and tc.function.arguments:
                    entry["arguments"] += tc.function.arguments

            if choice.finish_reason:
                finish_reason = choice.finish_reason

        tool_calls = [
            ToolCall(id=data["id"], name=data["name"], arguments=parse_tool_arguments(data["arguments"]))
            for _, data in sorted(tool_calls_in_progress.items())
        ]

        return LLMResponse(
            content="".join(content_parts) or None,
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(finish_reason, bool(tool_calls)),
            usage=usage,
        )

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> LLMResponse:
        """Run one turn against GPT.

        Raises:
            LLMProviderError: On API, timeout or connection errors
        """
        kwargs = self._build_request(messages, tools)

        try:
            if on_delta is None:
                completion = await self.client.chat.completions.create(**kwargs)
                return self._parse_completion(completion)
            return await self._stream(kwargs, on_delta)

        except openai.APIStatusError as e:
            if e.status_code == 429:
                logger.warning(f"Rate limited by OpenAI: {e}")
            else:
                logger.error(f"OpenAI API error {e.status_code}: {e}")
            raise LLMProviderError(
                f"OpenAI API error: {e.status_code}", status_code=e.status_code, original_error=e
            ) from e
        except openai.APITimeoutError as e:
            logger.error(f"OpenAI API timeout: {e}")
            raise LLMProviderError(f"Request timed out: {e}", original_error=e) from e
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise LLMProviderError(f"API error: {e}", original_error=e) from e

    async def close(self) -> None:
        await self.client.close()
