"""
Ollama LLM Provider.

Implements the LLMClient contract for Ollama's local ``/api/chat``
endpoint. Streaming responses are newline-delimited JSON; the final line
(``done: true``) carries the stop reason and token counts.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

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


class OllamaClient:
    """Ollama local LLM client.

    Usage:
        config = LLMProviderConfig(
            api_key="not-needed",  # Ollama doesn't require auth
            model="llama3.2",
            base_url="http://localhost:11434",
        )
        client = OllamaClient(config)
        response = await client.chat(messages, tools)
    """

    DEFAULT_MODEL = "llama3.2"
    DEFAULT_BASE_URL = "http://localhost:11434"

    def __init__(self, config: LLMProviderConfig, client: Optional[httpx.AsyncClient] = None):
        """Initialize the Ollama client.

        Args:
            config: Provider configuration
            client: Pre-built HTTP client (tests inject a mock transport)
        """
        self.config = config
        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(config.timeout, connect=10.0),
        )

    @property
    def model_name(self) -> str:
        return self.config.model

    def _build_payload(
        self, messages: list[Message], tools: Optional[list[ToolDefinition]], stream: bool
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"num_predict": self.config.max_tokens}
        if self.config.temperature is not None:
            options["temperature"] = self.config.temperature

        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
            "options": options,
        }
        if tools:
            payload["tools"] = [tool.to_openai_format() for tool in tools]
        return payload

    @staticmethod
    def _parse_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
        calls = []
        for i, tc in enumerate(message.get("tool_calls") or []):
            function = tc.get("function", {})
            name = function.get("name")
            if not name:
                continue
            calls.append(
                ToolCall(
                    id=tc.get("id") or f"tool-{i}",
                    name=name,
                    arguments=parse_tool_arguments(function.get("arguments")),
                )
            )
        return calls

    @staticmethod
    def _usage(data: dict[str, Any]) -> TokenUsage:
        return TokenUsage(
            input_tokens=data.get("prompt_eval_count") or 0,
            output_tokens=data.get("eval_count") or 0,
        )

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        message = data.get("message") or {}
        tool_calls = self._parse_tool_calls(message)
        return LLMResponse(
            content=message.get("content") or None,
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(data.get("done_reason"), bool(tool_calls)),
            usage=self._usage(data),
        )

    async def _stream(self, payload: dict[str, Any], on_delta: DeltaCallback) -> LLMResponse:
        content_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        last: dict[str, Any] = {}

        async with self.client.stream("POST", "/api/chat", json=payload) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            # Process newline-delimited JSON stream
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse Ollama response: {e}")
                    continue

                last = chunk
                message = chunk.get("message") or {}
                content = message.get("content")
                if content:
                    content_parts.append(content)
                    await emit_delta(on_delta, content)
                tool_calls.extend(self._parse_tool_calls(message))

                if chunk.get("done"):
                    break

        return LLMResponse(
            content="".join(content_parts) or None,
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(last.get("done_reason"), bool(tool_calls)),
            usage=self._usage(last),
        )

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> LLMResponse:
        """Run one turn against Ollama.

        Raises:
            LLMProviderError: On HTTP, timeout or connection errors
        """
        payload = self._build_payload(messages, tools, stream=on_delta is not None)

        try:
            if on_delta is not None:
                return await self._stream(payload, on_delta)

            response = await self.client.post("/api/chat", json=payload)
            response.raise_for_status()
            return self._parse_response(response.json())

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            error_msg = f"Ollama request failed ({status}): {e.response.text}"
            logger.error(error_msg)
            raise LLMProviderError(error_msg, status_code=status, original_error=e) from e
        except httpx.TimeoutException as e:
            logger.error(f"Ollama request timeout: {e}")
            raise LLMProviderError(f"Ollama request timeout: {e}", original_error=e) from e
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise LLMProviderError(f"Ollama connection error: {e}", original_error=e) from e

    async def close(self) -> None:
        await self.client.aclose()
