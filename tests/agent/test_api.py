"""
Integration tests for the OpenAI-compatible agent API.

Tests cover:
    - /health, /v1/models and /v1/chat/completions (JSON and SSE)
    - Request validation errors (400) and AgentError status mapping
    - Session continuity through the x-session-id header
    - RBAC tool scoping from the role header and from JWT claims
    - Rate limiting (429 with Retry-After)
    - API key and JWT authentication
"""

import asyncio
import json
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from src.opsagent.api.app import create_app
from src.opsagent.domain.entities import (
    LLMResponse,
    StopReason,
    TokenUsage,
    ToolCall,
)
from src.opsagent.orchestrator.agent import AgentConfig
from src.opsagent.providers.base import LLMProviderError
from src.opsagent.security.rate_limiter import FixedWindowRateLimiter, RateLimitConfig
from src.opsagent.security.rbac import ROLE_HEADER, RoleToolConfigError
from src.opsagent.session.memory import MemorySessionStore
from src.opsagent.settings import AgentSettings
from src.opsagent.tools.builtin import create_default_registry

JWT_SECRET = "test-secret-key-for-testing-only-0123456789"
ROLE_TOOL_CONFIG = '{"admin": ["all"], "user": ["calculator"]}'


class MockLLM:
    """Scripted LLM client that records the tools it was offered."""

    def __init__(self, responses=None, deltas=None):
        self.responses = list(responses or [])
        self.deltas = deltas or []
        self.calls = []
        self.tool_names = []

    async def chat(self, messages, tools=None, on_delta=None):
        self.calls.append(list(messages))
        self.tool_names.append([t.name for t in tools or []])

        if self.responses:
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        else:
            response = LLMResponse(
                content=f"Echo: {messages[-1].content}",
                usage=TokenUsage(input_tokens=10, output_tokens=4),
            )
        if isinstance(response, BaseException):
            raise response

        if on_delta is not None:
            for delta in self.deltas or [response.content or ""]:
                await on_delta(delta)
        return response


def make_app(llm=None, store=None, **settings_overrides):
    settings = AgentSettings(
        llm_provider="ollama",
        rate_limit_enabled=False,
        **settings_overrides,
    )
    config = AgentConfig(
        llm=llm or MockLLM(),
        tools=create_default_registry(),
        system_prompt="You are a test assistant.",
        max_iterations=settings.max_iterations,
    )
    return create_app(settings, agent_config=config, session_store=store)


def chat_body(content="Hello!", stream=False, **extra):
    body = {"model": "opsagent", "messages": [{"role": "user", "content": content}], "stream": stream}
    body.update(extra)
    return body


def sse_events(text):
    return [line[len("data: "):] for line in text.splitlines() if line.startswith("data: ")]


def make_token(role=None, expires_in=3600, **claims):
    payload = {"sub": "user-123", "exp": int(time.time()) + expires_in, **claims}
    if role is not None:
        payload["realm_access"] = {"roles": ["offline_access", role]}
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


# ============================================
# Basic Endpoints
# ============================================


class TestEndpoints:
    """Tests for health, models and non-streaming chat."""

    def test_health(self):
        with TestClient(make_app()) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_models(self):
        with TestClient(make_app(model_id="ops-test")) as client:
            response = client.get("/v1/models")

        assert response.status_code == 200
        body = response.json()
        assert body["object"] == "list"
        assert [m["id"] for m in body["data"]] == ["ops-test"]

    def test_chat_completion(self):
        with TestClient(make_app()) as client:
            response = client.post("/v1/chat/completions", json=chat_body("Hello!"))

        assert response.status_code == 200
        body = response.json()
        assert body["object"] == "chat.completion"
        assert body["id"].startswith("chatcmpl-")
        assert body["choices"][0]["message"] == {"role": "assistant", "content": "Echo: Hello!"}
        assert body["choices"][0]["finish_reason"] == "stop"
        assert body["usage"] == {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14}
        assert response.headers["x-session-id"]

    def test_tool_round_trip_over_http(self):
        llm = MockLLM(
            [
                LLMResponse(
                    content=None,
                    tool_calls=[ToolCall(name="calculator", arguments={"expression": "6 * 7"})],
                    stop_reason=StopReason.TOOL_USE,
                ),
                LLMResponse(content="The answer is 42."),
            ]
        )

        with TestClient(make_app(llm)) as client:
            response = client.post("/v1/chat/completions", json=chat_body("6 times 7?"))

        assert response.json()["choices"][0]["message"]["content"] == "The answer is 42."
        assert llm.calls[1][-1].content == 'Tool "calculator" returned: {"result": 42}'


# ============================================
# Validation
# ============================================


class TestValidation:
    """Tests for malformed requests."""

    @pytest.fixture
    def client(self):
        with TestClient(make_app()) as client:
            yield client

    def test_body_not_json(self, client):
        response = client.post(
            "/v1/chat/completions",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid request"

    @pytest.mark.parametrize(
        "body",
        [
            {"model": "opsagent"},
            {"model": "opsagent", "messages": []},
            {"model": "opsagent", "messages": [{"role": "tool", "content": "x"}]},
            {"messages": [{"role": "user", "content": "hi"}]},
        ],
    )
    def test_schema_violations(self, client, body):
        response = client.post("/v1/chat/completions", json=body)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["message"] == "Invalid request"
        assert error["details"]

    def test_no_user_message(self, client):
        body = {"model": "opsagent", "messages": [{"role": "system", "content": "be nice"}]}

        response = client.post("/v1/chat/completions", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": {"message": "No user message found"}}


# ============================================
# Agent Errors
# ============================================


class TestAgentErrors:
    """Tests for mapping AgentError codes onto HTTP statuses."""

    @pytest.mark.parametrize(
        "error,status,code",
        [
            (LLMProviderError("slow down", status_code=429), 429, "RATE_LIMITED"),
            (LLMProviderError("down", status_code=503), 502, "API_ERROR"),
            (RuntimeError("weird"), 500, "UNKNOWN"),
        ],
    )
    def test_provider_failures(self, error, status, code):
        with TestClient(make_app(MockLLM([error]))) as client:
            response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == status
        assert response.json()["error"]["code"] == code
        assert response.headers["x-session-id"]

    def test_max_iterations(self):
        looping = LLMResponse(
            content=None,
            tool_calls=[ToolCall(name="calculator", arguments={"expression": "1+1"})],
            stop_reason=StopReason.TOOL_USE,
        )

        with TestClient(make_app(MockLLM([looping]), max_iterations=2)) as client:
            response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 500
        assert response.json() == {
            "error": {"message": "Agent exceeded max iterations (2)", "code": "MAX_ITERATIONS"}
        }

    def test_failed_run_does_not_touch_session(self):
        store = MemorySessionStore()
        llm = MockLLM([LLMProviderError("down", status_code=500)])

        app = make_app(llm, store=store)
        assert app.state.agent.session_store is store

        with TestClient(app) as client:
            response = client.post(
                "/v1/chat/completions", json=chat_body(), headers={"x-session-id": "s1"}
            )

        assert response.status_code == 502
        assert len(store) == 0


# ============================================
# Sessions
# ============================================


class TestSessions:
    """Tests for conversation continuity across requests."""

    def test_session_history_carried_forward(self):
        store = MemorySessionStore()
        llm = MockLLM()

        with TestClient(make_app(llm, store=store)) as client:
            first = client.post(
                "/v1/chat/completions", json=chat_body("first"), headers={"x-session-id": "s1"}
            )
            client.post(
                "/v1/chat/completions", json=chat_body("second"), headers={"x-session-id": "s1"}
            )

        assert first.headers["x-session-id"] == "s1"
        assert [m.content for m in llm.calls[1]] == [
            "You are a test assistant.",
            "first",
            "Echo: first",
            "second",
        ]

    def test_store_records_each_turn(self):
        store = MemorySessionStore()

        with TestClient(make_app(store=store)) as client:
            for text in ("one", "two"):
                client.post(
                    "/v1/chat/completions", json=chat_body(text), headers={"x-session-id": "s1"}
                )

        entry = asyncio.run(store.get("s1"))
        assert [m.content for m in entry.messages] == ["one", "Echo: one", "two", "Echo: two"]

    def test_injected_store_is_used_even_when_empty(self):
        store = MemorySessionStore()
        limiter = FixedWindowRateLimiter(RateLimitConfig(enabled=False))

        app = create_app(
            AgentSettings(llm_provider="ollama", session_store="redis"),
            agent_config=AgentConfig(
                llm=MockLLM(), tools=create_default_registry(), system_prompt="test"
            ),
            session_store=store,
            rate_limiter=limiter,
        )

        assert app.state.agent.session_store is store
        assert app.state.agent.rate_limiter is limiter

    def test_sessions_are_isolated(self):
        store = MemorySessionStore()
        llm = MockLLM()

        with TestClient(make_app(llm, store=store)) as client:
            client.post(
                "/v1/chat/completions", json=chat_body("secret for s1"), headers={"x-session-id": "s1"}
            )
            client.post(
                "/v1/chat/completions", json=chat_body("hello from s2"), headers={"x-session-id": "s2"}
            )

        s2_contents = [m.content for m in llm.calls[1]]
        assert "secret for s1" not in s2_contents
        assert "Echo: secret for s1" not in s2_contents
        assert s2_contents == ["You are a test assistant.", "hello from s2"]

        s2_entry = asyncio.run(store.get("s2"))
        assert [m.content for m in s2_entry.messages] == ["hello from s2", "Echo: hello from s2"]
        assert len(store) == 2

    def test_new_session_id_generated(self):
        with TestClient(make_app()) as client:
            a = client.post("/v1/chat/completions", json=chat_body())
            b = client.post("/v1/chat/completions", json=chat_body())

        assert a.headers["x-session-id"] != b.headers["x-session-id"]


# ============================================
# Streaming
# ============================================


class TestStreaming:
    """Tests for server-sent event responses."""

    def test_stream_chunks_then_done(self):
        llm = MockLLM([LLMResponse(content="Hello there")], deltas=["Hello", " there"])
        store = MemorySessionStore()

        with TestClient(make_app(llm, store=store)) as client:
            response = client.post(
                "/v1/chat/completions",
                json=chat_body("hi", stream=True),
                headers={"x-session-id": "s-stream"},
            )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["x-session-id"] == "s-stream"

        events = sse_events(response.text)
        assert events[-1] == "[DONE]"
        chunks = [json.loads(e) for e in events[:-1]]
        assert all(c["object"] == "chat.completion.chunk" for c in chunks)
        assert len({c["id"] for c in chunks}) == 1
        assert chunks[0]["choices"][0]["delta"] == {"role": "assistant"}
        assert [c["choices"][0]["delta"].get("content") for c in chunks[1:-1]] == ["Hello", " there"]
        assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
        assert len(store) == 1

    def test_stream_error_closes_without_done(self):
        llm = MockLLM([LLMProviderError("down", status_code=503)])
        store = MemorySessionStore()

        with TestClient(make_app(llm, store=store)) as client:
            response = client.post("/v1/chat/completions", json=chat_body(stream=True))

        events = sse_events(response.text)
        assert "[DONE]" not in events
        assert len(events) == 1
        assert len(store) == 0


# ============================================
# RBAC
# ============================================


class TestRBAC:
    """Tests for per-request tool scoping."""

    @pytest.mark.parametrize(
        "headers,expected",
        [
            ({ROLE_HEADER: "admin"}, ["fetch_url", "get_current_time", "calculator"]),
            ({ROLE_HEADER: "user"}, ["calculator"]),
            ({ROLE_HEADER: "intern"}, ["calculator"]),
            ({}, ["calculator"]),
        ],
    )
    def test_role_header_scopes_tools(self, headers, expected):
        llm = MockLLM()

        with TestClient(make_app(llm, role_tool_config=ROLE_TOOL_CONFIG)) as client:
            response = client.post("/v1/chat/completions", json=chat_body(), headers=headers)

        assert response.status_code == 200
        assert llm.tool_names[0] == expected

    def test_default_role_applies_without_header(self):
        llm = MockLLM()

        with TestClient(
            make_app(llm, role_tool_config=ROLE_TOOL_CONFIG, default_role="admin")
        ) as client:
            client.post("/v1/chat/completions", json=chat_body())

        assert len(llm.tool_names[0]) == 3

    def test_without_config_all_tools_visible(self):
        llm = MockLLM()

        with TestClient(make_app(llm)) as client:
            client.post("/v1/chat/completions", json=chat_body(), headers={ROLE_HEADER: "user"})

        assert len(llm.tool_names[0]) == 3

    @pytest.mark.parametrize("raw", ["{broken", '["admin"]', '{"user": "calculator"}'])
    def test_malformed_config_aborts_startup(self, raw):
        with pytest.raises(RoleToolConfigError):
            make_app(role_tool_config=raw)


# ============================================
# Rate Limiting
# ============================================


class TestRateLimiting:
    """Tests for the 429 path."""

    def test_over_limit_returns_429(self):
        app = create_app(
            AgentSettings(llm_provider="ollama", rate_limit_rpm=1, rate_limit_burst=0),
            agent_config=AgentConfig(
                llm=MockLLM(), tools=create_default_registry(), system_prompt="test"
            ),
        )
        headers = {"x-forwarded-for": "198.51.100.4"}

        with TestClient(app) as client:
            first = client.post("/v1/chat/completions", json=chat_body(), headers=headers)
            second = client.post("/v1/chat/completions", json=chat_body(), headers=headers)
            other = client.post(
                "/v1/chat/completions", json=chat_body(), headers={"x-forwarded-for": "203.0.113.9"}
            )

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json() == {"error": {"message": "Too Many Requests", "code": "RATE_LIMITED"}}
        assert 0 < int(second.headers["retry-after"]) <= 60
        assert other.status_code == 200


# ============================================
# Authentication
# ============================================


class TestApiKeyAuth:
    """Tests for static bearer key (dev mode) authentication."""

    @pytest.fixture
    def client(self):
        with TestClient(make_app(agent_api_key="dev-key")) as client:
            yield client

    def test_missing_key_rejected(self, client):
        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 401
        assert response.json() == {"error": {"message": "Invalid API key"}}
        assert response.headers["www-authenticate"] == "Bearer"

    def test_wrong_key_rejected(self, client):
        response = client.get("/v1/models", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_correct_key_accepted(self, client):
        response = client.post(
            "/v1/chat/completions", json=chat_body(), headers={"Authorization": "Bearer dev-key"}
        )

        assert response.status_code == 200

    def test_health_needs_no_auth(self, client):
        assert client.get("/health").status_code == 200


class TestJWTAuth:
    """Tests for JWT bearer authentication and role claims."""

    @pytest.fixture
    def llm(self):
        return MockLLM()

    @pytest.fixture
    def client(self, llm):
        app = make_app(llm, jwt_secret=JWT_SECRET, role_tool_config=ROLE_TOOL_CONFIG)
        with TestClient(app) as client:
            yield client

    def test_token_required(self, client):
        response = client.post("/v1/chat/completions", json=chat_body())

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Bearer token required"

    def test_expired_token_rejected(self, client):
        token = make_token(role="admin", expires_in=-3600)

        response = client.post(
            "/v1/chat/completions", json=chat_body(), headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid or expired token"

    def test_wrong_signature_rejected(self, client):
        token = jwt.encode(
            {"sub": "x", "exp": int(time.time()) + 60},
            "another-secret-key-that-is-long-enough-123",
            algorithm="HS256",
        )

        response = client.post(
            "/v1/chat/completions", json=chat_body(), headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    def test_token_without_exp_rejected(self, client):
        token = jwt.encode({"sub": "x"}, JWT_SECRET, algorithm="HS256")

        response = client.get("/v1/models", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_claim_role_overrides_header(self, client, llm):
        """A role asserted by the token beats the role header."""
        token = make_token(role="admin")

        response = client.post(
            "/v1/chat/completions",
            json=chat_body(),
            headers={"Authorization": f"Bearer {token}", ROLE_HEADER: "user"},
        )

        assert response.status_code == 200
        assert llm.tool_names[0] == ["fetch_url", "get_current_time", "calculator"]

    def test_token_without_role_uses_header(self, client, llm):
        token = make_token()

        client.post(
            "/v1/chat/completions",
            json=chat_body(),
            headers={"Authorization": f"Bearer {token}", ROLE_HEADER: "admin"},
        )

        assert len(llm.tool_names[0]) == 3
