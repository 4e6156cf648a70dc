"""
Unit tests for the LLM provider adapters.

Ollama is exercised over httpx.MockTransport; the Anthropic and OpenAI
adapters get their SDK client swapped for mocks after construction.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.opsagent.domain.entities import (
    ErrorCode,
    Message,
    StopReason,
    ToolDefinition,
)
from src.opsagent.orchestrator.agent import classify_provider_error
from src.opsagent.providers.anthropic import ANTHROPIC_AVAILABLE, AnthropicClient
from src.opsagent.providers.base import (
    LLMProviderConfig,
    LLMProviderError,
    emit_delta,
    map_stop_reason,
    parse_tool_arguments,
)
from src.opsagent.providers.ollama import OllamaClient
from src.opsagent.providers.openai import OPENAI_AVAILABLE, OpenAIClient

CALCULATOR = ToolDefinition(
    name="calculator",
    description="Evaluate arithmetic",
    input_schema={"type": "object", "properties": {"expression": {"type": "string"}}},
)

CONVERSATION = [Message.system("Be brief."), Message.user("What is 2 + 2?")]


# ============================================
# Shared helpers
# ============================================


class TestProviderHelpers:
    """Tests for helpers shared by the adapters."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, {}),
            ("", {}),
            ({"a": 1}, {"a": 1}),
            ('{"a": 1}', {"a": 1}),
            ("[1, 2]", {"value": [1, 2]}),
            ("{broken", {"raw": "{broken"}),
        ],
    )
    def test_parse_tool_arguments(self, raw, expected):
        assert parse_tool_arguments(raw) == expected

    @pytest.mark.parametrize(
        "reason,has_calls,expected",
        [
            ("stop", False, StopReason.END_TURN),
            ("end_turn", False, StopReason.END_TURN),
            ("tool_calls", False, StopReason.TOOL_USE),
            ("stop", True, StopReason.TOOL_USE),
            ("length", False, StopReason.MAX_TOKENS),
            (None, False, StopReason.END_TURN),
        ],
    )
    def test_map_stop_reason(self, reason, has_calls, expected):
        assert map_stop_reason(reason, has_calls) == expected

    @pytest.mark.asyncio
    async def test_emit_delta_accepts_sync_and_async_callbacks(self):
        received = []

        async def async_cb(text):
            received.append(("async", text))

        await emit_delta(lambda text: received.append(("sync", text)), "a")
        await emit_delta(async_cb, "b")
        await emit_delta(async_cb, "")
        await emit_delta(None, "ignored")

        assert received == [("sync", "a"), ("async", "b")]


# ============================================
# Ollama
# ============================================


def ollama_client(handler) -> OllamaClient:
    config = LLMProviderConfig(api_key="not-needed", model="qwen3:4b", base_url="http://ollama:11434")
    http = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
    return OllamaClient(config, client=http)


class TestOllamaClient:
    """Tests for the Ollama adapter."""

    @pytest.mark.asyncio
    async def test_non_streaming_tool_call(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [
                            {"function": {"name": "calculator", "arguments": {"expression": "2+2"}}}
                        ],
                    },
                    "done": True,
                    "done_reason": "stop",
                    "prompt_eval_count": 12,
                    "eval_count": 3,
                },
            )

        client = ollama_client(handler)
        response = await client.chat(CONVERSATION, [CALCULATOR])
        await client.close()

        assert seen["path"] == "/api/chat"
        assert seen["body"]["stream"] is False
        assert seen["body"]["messages"][0] == {"role": "system", "content": "Be brief."}
        assert seen["body"]["tools"][0]["function"]["name"] == "calculator"

        assert response.stop_reason == StopReason.TOOL_USE
        assert response.content is None
        assert response.tool_calls[0].name == "calculator"
        assert response.tool_calls[0].arguments == {"expression": "2+2"}
        assert response.tool_calls[0].id == "tool-0"
        assert (response.usage.input_tokens, response.usage.output_tokens) == (12, 3)

    @pytest.mark.asyncio
    async def test_streaming_emits_deltas(self):
        lines = [
            {"message": {"role": "assistant", "content": "Hello"}, "done": False},
            {"message": {"role": "assistant", "content": " world"}, "done": False},
            {
                "message": {"role": "assistant", "content": ""},
                "done": True,
                "done_reason": "stop",
                "prompt_eval_count": 5,
                "eval_count": 2,
            },
        ]
        body = "\n".join(json.dumps(line) for line in lines) + "\n"

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content=body.encode())

        deltas = []
        client = ollama_client(handler)
        response = await client.chat(CONVERSATION, on_delta=deltas.append)

        assert deltas == ["Hello", " world"]
        assert response.content == "Hello world"
        assert response.stop_reason == StopReason.END_TURN
        assert response.usage.output_tokens == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,code", [(429, ErrorCode.RATE_LIMITED), (500, ErrorCode.API_ERROR)])
    async def test_http_errors_carry_status(self, status, code):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="nope")

        with pytest.raises(LLMProviderError) as exc_info:
            await ollama_client(handler).chat(CONVERSATION)

        assert exc_info.value.status_code == status
        assert classify_provider_error(exc_info.value).code == code

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LLMProviderError, match="connection error") as exc_info:
            await ollama_client(handler).chat(CONVERSATION)

        assert exc_info.value.status_code is None


# ============================================
# Anthropic
# ============================================


@pytest.mark.skipif(not ANTHROPIC_AVAILABLE, reason="anthropic package not installed")
class TestAnthropicClient:
    """Tests for the Anthropic adapter."""

    @pytest.fixture
    def client(self):
        client = AnthropicClient(LLMProviderConfig(api_key="sk-ant-test", model="claude-test"))
        client.client = MagicMock()
        return client

    @staticmethod
    def message(*blocks, stop_reason="end_turn"):
        return SimpleNamespace(
            content=list(blocks),
            stop_reason=stop_reason,
            usage=SimpleNamespace(input_tokens=20, output_tokens=8),
        )

    @pytest.mark.asyncio
    async def test_system_prompt_split_out(self, client):
        client.client.messages.create = AsyncMock(
            return_value=self.message(SimpleNamespace(type="text", text="4"))
        )

        response = await client.chat(CONVERSATION, [CALCULATOR])

        kwargs = client.client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be brief."
        assert kwargs["messages"] == [{"role": "user", "content": "What is 2 + 2?"}]
        assert kwargs["tools"][0]["input_schema"] == CALCULATOR.input_schema
        assert response.content == "4"
        assert response.stop_reason == StopReason.END_TURN
        assert response.usage.input_tokens == 20

    @pytest.mark.asyncio
    async def test_tool_use_blocks(self, client):
        client.client.messages.create = AsyncMock(
            return_value=self.message(
                SimpleNamespace(type="text", text="Calculating."),
                SimpleNamespace(
                    type="tool_use", id="toolu_1", name="calculator", input={"expression": "2+2"}
                ),
                stop_reason="tool_use",
            )
        )

        response = await client.chat(CONVERSATION, [CALCULATOR])

        assert response.stop_reason == StopReason.TOOL_USE
        assert response.content == "Calculating."
        assert response.tool_calls[0].id == "toolu_1"
        assert response.tool_calls[0].arguments == {"expression": "2+2"}

    @pytest.mark.asyncio
    async def test_streaming(self, client):
        final = self.message(SimpleNamespace(type="text", text="Hi there"))

        class FakeStream:
            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc):
                return False

            @property
            async def text_stream(self):
                for text in ("Hi", " there"):
                    yield text

            async def get_final_message(self):
                return final

        client.client.messages.stream = MagicMock(return_value=FakeStream())
        deltas = []

        response = await client.chat(CONVERSATION, on_delta=deltas.append)

        assert deltas == ["Hi", " there"]
        assert response.content == "Hi there"

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_status(self, client):
        import anthropic

        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.RateLimitError(
            "rate limited", response=httpx.Response(429, request=request), body=None
        )
        client.client.messages.create = AsyncMock(side_effect=error)

        with pytest.raises(LLMProviderError) as exc_info:
            await client.chat(CONVERSATION)

        assert exc_info.value.status_code == 429
        assert exc_info.value.original_error is error


# ============================================
# OpenAI
# ============================================


@pytest.mark.skipif(not OPENAI_AVAILABLE, reason="openai package not installed")
class TestOpenAIClient:
    """Tests for the OpenAI adapter."""

    @pytest.fixture
    def client(self):
        client = OpenAIClient(LLMProviderConfig(api_key="sk-test", model="gpt-test"))
        client.client = MagicMock()
        return client

    @pytest.mark.asyncio
    async def test_tool_call_arguments_decoded(self, client):
        completion = SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(
                        content=None,
                        tool_calls=[
                            SimpleNamespace(
                                id="call_1",
                                function=SimpleNamespace(
                                    name="calculator", arguments='{"expression": "6*7"}'
                                ),
                            )
                        ],
                    ),
                    finish_reason="tool_calls",
                )
            ],
            usage=SimpleNamespace(prompt_tokens=9, completion_tokens=4),
        )
        client.client.chat.completions.create = AsyncMock(return_value=completion)

        response = await client.chat(CONVERSATION, [CALCULATOR])

        kwargs = client.client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
        assert kwargs["tools"][0]["type"] == "function"
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.tool_calls[0].arguments == {"expression": "6*7"}
        assert response.usage.output_tokens == 4

    @pytest.mark.asyncio
    async def test_streaming_accumulates_text_and_tool_fragments(self, client):
        def chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
            choices = []
            if content is not None or tool_calls is not None or finish_reason is not None:
                choices = [
                    SimpleNamespace(
                        delta=SimpleNamespace(content=content, tool_calls=tool_calls),
                        finish_reason=finish_reason,
                    )
                ]
            return SimpleNamespace(choices=choices, usage=usage)

        def fragment(index, id=None, name=None, arguments=None):
            return SimpleNamespace(
                index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments)
            )

        async def stream():
            yield chunk(content="Let me ")
            yield chunk(content="check.")
            yield chunk(tool_calls=[fragment(0, id="call_9", name="calculator", arguments='{"expr')])
            yield chunk(tool_calls=[fragment(0, arguments='ession": "1+1"}')])
            yield chunk(finish_reason="tool_calls")
            yield chunk(usage=SimpleNamespace(prompt_tokens=4, completion_tokens=6))

        client.client.chat.completions.create = AsyncMock(return_value=stream())
        deltas = []

        response = await client.chat(CONVERSATION, [CALCULATOR], on_delta=deltas.append)

        assert client.client.chat.completions.create.call_args.kwargs["stream"] is True
        assert deltas == ["Let me ", "check."]
        assert response.content == "Let me check."
        assert response.tool_calls[0].id == "call_9"
        assert response.tool_calls[0].arguments == {"expression": "1+1"}
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.usage.output_tokens == 6

    @pytest.mark.asyncio
    async def test_server_error_maps_to_status(self, client):
        import openai

        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = openai.InternalServerError(
            "server error", response=httpx.Response(503, request=request), body=None
        )
        client.client.chat.completions.create = AsyncMock(side_effect=error)

        with pytest.raises(LLMProviderError) as exc_info:
            await client.chat(CONVERSATION)

        assert exc_info.value.status_code == 503
        assert classify_provider_error(exc_info.value).code == ErrorCode.API_ERROR
