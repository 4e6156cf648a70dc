"""
FastAPI application for the ops agent.

``create_app`` wires settings into the agent dependencies:

- Parses ROLE_TOOL_CONFIG once; a malformed value aborts startup
- Builds the session store, rate limiter and authenticator
- Runs the session sweeper for the lifetime of the app
- Logs every request with method, path, status and duration

Usage:
    uvicorn "opsagent.api.app:create_app" --factory
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..bootstrap import create_agent_config
from ..domain.ports import SessionStore
from ..orchestrator.agent import AgentConfig
from ..security.auth import AuthConfig, Authenticator
from ..security.rate_limiter import FixedWindowRateLimiter, RateLimitConfig
from ..security.rbac import parse_role_tool_config
from ..session import SessionSweeper, create_session_store
from ..settings import AgentSettings
from ..tracing import init_tracing
from .router import AgentDependencies, error_response, router

logger = logging.getLogger(__name__)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=headers)
    return error_response(str(exc.detail), exc.status_code, headers=headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response("Invalid request", 400)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response("Internal server error", 500)


async def _close_llm(config: AgentConfig) -> None:
    close = getattr(config.llm, "close", None)
    if close is not None:
        await close()


def create_app(
    settings: Optional[AgentSettings] = None,
    agent_config: Optional[AgentConfig] = None,
    session_store: Optional[SessionStore] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
    authenticator: Optional[Authenticator] = None,
) -> FastAPI:
    """Create the agent API application.

    Args:
        settings: Settings (defaults to AgentSettings.from_env())
        agent_config: Base agent configuration (defaults to the configured
            provider with the built-in tools)
        session_store: Session backend (defaults to SESSION_STORE)
        rate_limiter: Rate limiter (defaults to RATE_LIMIT_* settings)
        authenticator: Authenticator (defaults to AGENT_API_KEY / JWT_* settings)

    Raises:
        RoleToolConfigError: If ROLE_TOOL_CONFIG is malformed
        SettingsError: If settings are invalid
    """
    if settings is None:
        settings = AgentSettings.from_env()

    # Fails fast: RBAC misconfiguration must never reach request time
    role_tool_config = parse_role_tool_config(settings.role_tool_config)

    # Stores define __len__, so an empty one is falsy; compare against None
    if agent_config is None:
        agent_config = create_agent_config(settings)
    store = session_store
    if store is None:
        store = create_session_store(
            settings.session_store, settings.redis_url, ttl=settings.session_ttl
        )
    limiter = rate_limiter
    if limiter is None:
        limiter = FixedWindowRateLimiter(
            RateLimitConfig(
                rpm=settings.rate_limit_rpm,
                burst=settings.rate_limit_burst,
                enabled=settings.rate_limit_enabled,
            )
        )
    auth = authenticator
    if auth is None:
        auth = Authenticator(
            AuthConfig(
                api_key=settings.agent_api_key,
                jwt_secret=settings.jwt_secret,
                jwks_url=settings.jwt_jwks_url,
                issuer=settings.jwt_issuer,
                audience=settings.jwt_audience,
            )
        )
    sweeper = SessionSweeper(store, max_age=settings.session_ttl)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the session sweeper; close backends on shutdown."""
        init_tracing(settings.tracing_enabled)
        await sweeper.start()
        logger.info(f"Agent API ready, tools: {', '.join(agent_config.tools.list())}")

        yield

        logger.info("Shutting down agent API...")
        await sweeper.stop()
        await store.close()
        await _close_llm(agent_config)

    app = FastAPI(
        title="Ops Agent API",
        description="OpenAI-compatible API for an LLM agent with role-scoped tools.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.agent = AgentDependencies(
        agent_config=agent_config,
        session_store=store,
        rate_limiter=limiter,
        authenticator=auth,
        role_tool_config=role_tool_config,
        default_role=settings.default_role,
        model_id=settings.model_id,
    )
    app.state.sweeper = sweeper

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "Accept", "x-session-id"],
            expose_headers=["x-session-id"],
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {duration_ms:.1f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 1),
            },
        )
        return response

    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    return app
