"""Security components: authentication, RBAC tool filtering, rate limiting."""

from .auth import AuthConfig, AuthenticationError, Authenticator, extract_role_from_claims
from .rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitConfig,
    RateLimitDecision,
    RateLimitExceededError,
    default_client_key,
)
from .rbac import (
    ROLE_HEADER,
    RoleToolConfig,
    RoleToolConfigError,
    build_filtered_registry,
    filter_tools_for_role,
    parse_role_tool_config,
    resolve_role,
)

__all__ = [
    # Auth
    "AuthConfig",
    "AuthenticationError",
    "Authenticator",
    "extract_role_from_claims",
    # Rate limiting
    "FixedWindowRateLimiter",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitExceededError",
    "default_client_key",
    # RBAC
    "ROLE_HEADER",
    "RoleToolConfig",
    "RoleToolConfigError",
    "build_filtered_registry",
    "filter_tools_for_role",
    "parse_role_tool_config",
    "resolve_role",
]
