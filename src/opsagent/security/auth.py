"""
Bearer Authentication for the Agent API.

Two modes, selected by configuration:

- Static key (dev mode): when no JWT source is configured and
  AGENT_API_KEY is set, requests must carry ``Authorization: Bearer <key>``.
  With no key either, requests pass unauthenticated.
- JWT: when JWT_SECRET (HS256) or JWT_JWKS_URL (RS256 via JWKS) is set,
  a valid bearer token is required. The caller's role is taken from
  ``realm_access.roles`` and handed to RBAC as a pre-validated role.

Environment Variables:
- AGENT_API_KEY: Static bearer key for dev mode
- JWT_SECRET: Shared secret for HS256 tokens
- JWT_JWKS_URL: JWKS endpoint for RS256 tokens
- JWT_ISSUER: Expected issuer claim (optional)
- JWT_AUDIENCE: Expected audience claim (optional)
- JWT_CLOCK_SKEW_SECONDS: Clock skew tolerance (default: 30)
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import jwt
from fastapi import HTTPException, Request, status
from jwt.exceptions import InvalidTokenError, PyJWKClientError

logger = logging.getLogger(__name__)

# Roles recognised in realm_access.roles, in priority order
KNOWN_ROLES = ("admin", "user")


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value else None


@dataclass
class AuthConfig:
    """Authentication configuration."""

    api_key: Optional[str] = field(default_factory=lambda: _env("AGENT_API_KEY"))
    jwt_secret: Optional[str] = field(default_factory=lambda: _env("JWT_SECRET"))
    jwks_url: Optional[str] = field(default_factory=lambda: _env("JWT_JWKS_URL"))
    issuer: Optional[str] = field(default_factory=lambda: _env("JWT_ISSUER"))
    audience: Optional[str] = field(default_factory=lambda: _env("JWT_AUDIENCE"))
    clock_skew_seconds: int = field(
        default_factory=lambda: int(os.getenv("JWT_CLOCK_SKEW_SECONDS", "30"))
    )

    @property
    def jwt_enabled(self) -> bool:
        return bool(self.jwt_secret or self.jwks_url)


class AuthenticationError(HTTPException):
    """Authentication failure exception."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def extract_role_from_claims(claims: dict[str, Any]) -> Optional[str]:
    """Return the first known role in ``realm_access.roles``, if any."""
    realm_access = claims.get("realm_access")
    if not isinstance(realm_access, dict):
        return None
    roles = realm_access.get("roles")
    if not isinstance(roles, list):
        return None
    for role in roles:
        if role in KNOWN_ROLES:
            return role
    return None


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class Authenticator:
    """FastAPI dependency that authenticates a request.

    Returns the role asserted by a validated JWT, or None when the
    request carries no role (dev mode, or a token without a known role).

    Usage:
        authenticator = Authenticator(AuthConfig())

        @router.post("/chat")
        async def chat(jwt_role: Optional[str] = Depends(authenticator)):
            ...
    """

    def __init__(self, config: Optional[AuthConfig] = None):
        self.config = config or AuthConfig()
        self._jwks_client: Optional[jwt.PyJWKClient] = None

        if not self.config.jwt_enabled and not self.config.api_key:
            logger.warning(
                "No AGENT_API_KEY or JWT source configured - authentication disabled. "
                "This should NEVER be used in production!"
            )

    def _get_jwks_client(self) -> jwt.PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(self.config.jwks_url, cache_keys=True)
        return self._jwks_client

    def _decode_options(self) -> dict[str, Any]:
        return {
            "require": ["exp"],
            "verify_aud": self.config.audience is not None,
            "verify_iss": self.config.issuer is not None,
        }

    async def decode_token(self, token: str) -> dict[str, Any]:
        """Validate a JWT and return its claims.

        Raises:
            AuthenticationError: If the token is invalid or expired
        """
        try:
            if self.config.jwks_url:
                # PyJWKClient fetches keys synchronously
                signing_key = await asyncio.to_thread(
                    self._get_jwks_client().get_signing_key_from_jwt, token
                )
                key: Any = signing_key.key
                algorithms = ["RS256"]
            else:
                key = self.config.jwt_secret
                algorithms = ["HS256"]

            return jwt.decode(
                token,
                key,
                algorithms=algorithms,
                audience=self.config.audience,
                issuer=self.config.issuer,
                leeway=self.config.clock_skew_seconds,
                options=self._decode_options(),
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT validation failed: token expired")
            raise AuthenticationError("Invalid or expired token")
        except (InvalidTokenError, PyJWKClientError) as e:
            logger.warning(f"JWT validation failed: {e}")
            raise AuthenticationError("Invalid or expired token")

    async def __call__(self, request: Request) -> Optional[str]:
        token = _bearer_token(request)

        if not self.config.jwt_enabled:
            if self.config.api_key is None:
                return None
            if token is None or not hmac.compare_digest(token, self.config.api_key):
                logger.warning(f"Invalid API key for {request.url.path}")
                raise AuthenticationError("Invalid API key")
            return None

        if token is None:
            raise AuthenticationError("Bearer token required")

        claims = await self.decode_token(token)
        role = extract_role_from_claims(claims)
        logger.debug(f"Authenticated subject {claims.get('sub')} with role {role}")
        return role
