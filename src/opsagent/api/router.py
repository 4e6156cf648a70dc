"""
FastAPI Router for the ops agent.

OpenAI-compatible endpoints:
- GET  /health                 liveness, no auth
- GET  /v1/models              the single exposed model
- POST /v1/chat/completions    one agent run, JSON or SSE streaming

Per request the chat endpoint authenticates, applies the rate limit,
resolves the caller's role, scopes the tool registry with RBAC, loads the
session history and runs the agent loop. On success the new turn is
appended to the session and the session id is echoed in ``x-session-id``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ..domain.entities import ErrorCode, SessionEntry
from ..domain.errors import AgentError
from ..domain.ports import SessionStore
from ..orchestrator.agent import AgentConfig, run_agent
from ..security.auth import Authenticator
from ..security.rate_limiter import FixedWindowRateLimiter
from ..security.rbac import RoleToolConfig, build_filtered_registry, resolve_role
from .schemas import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ModelInfo,
    ModelList,
    new_completion_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agent"])

SESSION_HEADER = "x-session-id"

ERROR_STATUS = {
    ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.API_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.MAX_ITERATIONS: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.TOOL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.UNKNOWN: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# =============================================================================
# Dependencies
# =============================================================================


@dataclass
class AgentDependencies:
    """Container for agent dependencies.

    Built by create_app and stored on ``app.state.agent``.
    """

    agent_config: AgentConfig
    session_store: SessionStore
    rate_limiter: FixedWindowRateLimiter
    authenticator: Authenticator
    role_tool_config: Optional[RoleToolConfig] = None
    default_role: Optional[str] = None
    model_id: str = "opsagent"


def get_dependencies(request: Request) -> AgentDependencies:
    """Get the agent dependencies for the running app."""
    deps = getattr(request.app.state, "agent", None)
    if deps is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Agent not initialized",
        )
    return deps


async def authenticate(
    request: Request,
    deps: AgentDependencies = Depends(get_dependencies),
) -> Optional[str]:
    """Validate credentials; returns the JWT-asserted role, if any."""
    return await deps.authenticator(request)


async def enforce_rate_limit(
    request: Request,
    deps: AgentDependencies = Depends(get_dependencies),
) -> None:
    await deps.rate_limiter(request)


def error_response(
    message: str,
    status_code: int,
    code: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
    **extra,
) -> JSONResponse:
    body: dict = {"message": message}
    if code is not None:
        body["code"] = code
    body.update(extra)
    return JSONResponse({"error": body}, status_code=status_code, headers=headers)


def _sse(data: str) -> str:
    return f"data: {data}\n\n"


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/v1/models", response_model=ModelList, dependencies=[Depends(authenticate)])
async def list_models(deps: AgentDependencies = Depends(get_dependencies)) -> ModelList:
    return ModelList(data=[ModelInfo(id=deps.model_id)])


@router.post("/v1/chat/completions")
async def chat_completions(
    request: Request,
    jwt_role: Optional[str] = Depends(authenticate),
    _: None = Depends(enforce_rate_limit),
    deps: AgentDependencies = Depends(get_dependencies),
):
    """Run the agent for one OpenAI-style chat completion request."""
    try:
        body = await request.json()
        chat_request = ChatCompletionRequest.model_validate(body)
    except json.JSONDecodeError:
        return error_response("Invalid request", status.HTTP_400_BAD_REQUEST, details="Body is not valid JSON")
    except ValidationError as e:
        return error_response(
            "Invalid request",
            status.HTTP_400_BAD_REQUEST,
            details=json.loads(e.json(include_url=False)),
        )

    last_user_content = chat_request.last_user_content()
    if last_user_content is None:
        return error_response("No user message found", status.HTTP_400_BAD_REQUEST)

    session_id = request.headers.get(SESSION_HEADER) or str(uuid.uuid4())
    session = await deps.session_store.get(session_id) or SessionEntry()
    previous_messages = list(session.messages)
    input_messages = [m.to_domain() for m in chat_request.messages]

    role = resolve_role(request.headers, jwt_role=jwt_role, default_role=deps.default_role)
    config = dataclasses.replace(
        deps.agent_config,
        tools=build_filtered_registry(deps.agent_config.tools, role, deps.role_tool_config),
    )
    logger.info(
        f"RBAC resolved role {role} for session {session_id}",
        extra={"session_id": session_id, "role": role, "tools_allowed": config.tools.list()},
    )

    async def update_session(response_text: str) -> None:
        session.append_turn(last_user_content, response_text)
        await deps.session_store.set(session_id, session)

    def log_run(result, stream: bool) -> None:
        logger.info(
            f"Agent run complete for session {session_id} in {result.iterations} iterations",
            extra={
                "session_id": session_id,
                "iterations": result.iterations,
                "tools_used": len(result.tools_used),
                "input_tokens": result.usage.input_tokens,
                "output_tokens": result.usage.output_tokens,
                "stream": stream,
            },
        )

    session_headers = {SESSION_HEADER: session_id}

    if not chat_request.stream:
        try:
            result = await run_agent(config, input_messages, previous_messages)
        except AgentError as e:
            logger.error(
                f"Agent run failed for session {session_id}: {e.message}",
                extra={"session_id": session_id, "code": e.code.value},
            )
            return error_response(
                e.message, ERROR_STATUS[e.code], code=e.code.value, headers=session_headers
            )

        await update_session(result.response)
        log_run(result, stream=False)
        payload = ChatCompletionResponse.build(result.response, deps.model_id, result.usage)
        return JSONResponse(payload.model_dump(), headers=session_headers)

    completion_id = new_completion_id()

    async def event_stream() -> AsyncIterator[str]:
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

        async def on_delta(text: str) -> None:
            chunk = ChatCompletionChunk.build(completion_id, deps.model_id, content=text)
            await queue.put(chunk.model_dump_json())

        async def produce() -> None:
            try:
                result = await run_agent(config, input_messages, previous_messages, on_delta)
                await update_session(result.response)
                log_run(result, stream=True)
                finish = ChatCompletionChunk.build(completion_id, deps.model_id, finish_reason="stop")
                await queue.put(finish.model_dump_json())
                await queue.put("[DONE]")
            except AgentError as e:
                # Stream is aborted; client sees the connection close
                logger.error(
                    f"Agent run failed for session {session_id}: {e.message}",
                    extra={"session_id": session_id, "code": e.code.value, "stream": True},
                )
            except Exception as e:
                logger.exception(f"Unexpected streaming error for session {session_id}: {e}")
            finally:
                await queue.put(None)

        role_chunk = ChatCompletionChunk.build(completion_id, deps.model_id, role="assistant")
        yield _sse(role_chunk.model_dump_json())

        producer = asyncio.create_task(produce())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield _sse(item)
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={**session_headers, "Cache-Control": "no-cache"},
    )
