"""
Environment configuration for the ops agent.

All settings are read from the process environment. Entry points call
``dotenv.load_dotenv()`` first so a local ``.env`` file can supply them.

Environment Variables:
- LLM_PROVIDER: anthropic | openai | ollama (default: anthropic)
- ANTHROPIC_API_KEY / ANTHROPIC_MODEL
- OPENAI_API_KEY / OPENAI_MODEL / OPENAI_BASE_URL
- OLLAMA_BASE_URL / OLLAMA_MODEL
- LLM_MAX_TOKENS: Max tokens per response (default: 4096)
- LLM_TIMEOUT_SECONDS: Provider request timeout (default: 60)
- MAX_ITERATIONS: Agent turn budget (default: 10)
- TOOL_TIMEOUT_SECONDS: Per-tool timeout (default: 30)
- VERBOSE: Log agent iterations at INFO (default: false)
- MODEL_ID: Model id exposed by the API (default: opsagent)
- ROLE_TOOL_CONFIG / DEFAULT_ROLE: RBAC, see security.rbac
- RATE_LIMIT_RPM / RATE_LIMIT_BURST / RATE_LIMIT_ENABLED
- SESSION_STORE: memory | redis (default: memory)
- REDIS_URL: Redis URL for the redis session store
- SESSION_TTL_SECONDS: Session idle lifetime (default: 1800)
- AGENT_API_KEY / JWT_SECRET / JWT_JWKS_URL / JWT_ISSUER / JWT_AUDIENCE
- LOG_LEVEL / LOG_FORMAT: Logging (default: INFO / text)
- TRACING_ENABLED: Span logging (default: false)
- HOST / PORT: API bind address (default: 0.0.0.0 / 8001)
- CORS_ORIGINS: Comma-separated allowed origins (default: none)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

LLM_PROVIDERS = ("anthropic", "openai", "ollama")
SESSION_BACKENDS = ("memory", "redis")
LOG_FORMATS = ("text", "json")


class SettingsError(ValueError):
    """Raised for invalid or missing configuration."""


def _get(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise SettingsError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise SettingsError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise SettingsError(f"{name} must be positive, got {value}")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _get_choice(env: Mapping[str, str], name: str, default: str, choices: tuple[str, ...]) -> str:
    value = (_get(env, name, default) or default).lower()
    if value not in choices:
        raise SettingsError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass
class AgentSettings:
    """Resolved runtime configuration."""

    # LLM
    llm_provider: str = "anthropic"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    openai_base_url: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    llm_max_tokens: int = 4096
    llm_timeout: float = 60.0

    # Agent loop
    max_iterations: int = 10
    tool_timeout: float = 30.0
    verbose: bool = False
    model_id: str = "opsagent"

    # RBAC
    role_tool_config: Optional[str] = None
    default_role: Optional[str] = None

    # Rate limiting
    rate_limit_rpm: int = 60
    rate_limit_burst: int = 10
    rate_limit_enabled: bool = True

    # Sessions
    session_store: str = "memory"
    redis_url: Optional[str] = None
    session_ttl: int = 1800

    # Auth
    agent_api_key: Optional[str] = None
    jwt_secret: Optional[str] = None
    jwt_jwks_url: Optional[str] = None
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    # Observability
    log_level: str = "INFO"
    log_format: str = "text"
    tracing_enabled: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8001
    cors_origins: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AgentSettings":
        """Build settings from environment variables.

        Raises:
            SettingsError: If a value has the wrong type or is out of range
        """
        env = os.environ if env is None else env
        defaults = cls()

        cors = _get(env, "CORS_ORIGINS")
        return cls(
            llm_provider=_get_choice(env, "LLM_PROVIDER", defaults.llm_provider, LLM_PROVIDERS),
            anthropic_api_key=_get(env, "ANTHROPIC_API_KEY"),
            anthropic_model=_get(env, "ANTHROPIC_MODEL", defaults.anthropic_model),
            openai_api_key=_get(env, "OPENAI_API_KEY"),
            openai_model=_get(env, "OPENAI_MODEL", defaults.openai_model),
            openai_base_url=_get(env, "OPENAI_BASE_URL"),
            ollama_base_url=_get(env, "OLLAMA_BASE_URL", defaults.ollama_base_url),
            ollama_model=_get(env, "OLLAMA_MODEL", defaults.ollama_model),
            llm_max_tokens=_get_int(env, "LLM_MAX_TOKENS", defaults.llm_max_tokens, minimum=1),
            llm_timeout=_get_float(env, "LLM_TIMEOUT_SECONDS", defaults.llm_timeout),
            max_iterations=_get_int(env, "MAX_ITERATIONS", defaults.max_iterations, minimum=1),
            tool_timeout=_get_float(env, "TOOL_TIMEOUT_SECONDS", defaults.tool_timeout),
            verbose=_get_bool(env, "VERBOSE", defaults.verbose),
            model_id=_get(env, "MODEL_ID", defaults.model_id),
            role_tool_config=_get(env, "ROLE_TOOL_CONFIG"),
            default_role=_get(env, "DEFAULT_ROLE"),
            rate_limit_rpm=_get_int(env, "RATE_LIMIT_RPM", defaults.rate_limit_rpm),
            rate_limit_burst=_get_int(env, "RATE_LIMIT_BURST", defaults.rate_limit_burst),
            rate_limit_enabled=_get_bool(env, "RATE_LIMIT_ENABLED", defaults.rate_limit_enabled),
            session_store=_get_choice(env, "SESSION_STORE", defaults.session_store, SESSION_BACKENDS),
            redis_url=_get(env, "REDIS_URL"),
            session_ttl=_get_int(env, "SESSION_TTL_SECONDS", defaults.session_ttl, minimum=1),
            agent_api_key=_get(env, "AGENT_API_KEY"),
            jwt_secret=_get(env, "JWT_SECRET"),
            jwt_jwks_url=_get(env, "JWT_JWKS_URL"),
            jwt_issuer=_get(env, "JWT_ISSUER"),
            jwt_audience=_get(env, "JWT_AUDIENCE"),
            log_level=(_get(env, "LOG_LEVEL", defaults.log_level) or "INFO").upper(),
            log_format=_get_choice(env, "LOG_FORMAT", defaults.log_format, LOG_FORMATS),
            tracing_enabled=_get_bool(env, "TRACING_ENABLED", defaults.tracing_enabled),
            host=_get(env, "HOST", defaults.host),
            port=_get_int(env, "PORT", defaults.port, minimum=1),
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()] if cors else [],
        )
