"""
Per-client Rate Limiting.

Fixed-window admission control placed in front of the agent loop. Each
client key gets a 60 second window; the ceiling per window is
``rpm + burst``. Counters live in process memory and are mutated without
awaiting, so the increment-and-compare step is atomic on the event loop.

Features:
- Configurable steady rate and burst allowance
- Pluggable client key function (default: forwarded-for / real-ip headers)
- Retry-After computed from the time left in the current window
- Periodic pruning of expired windows

Environment Variables:
- RATE_LIMIT_RPM: Requests per minute (default: 60)
- RATE_LIMIT_BURST: Extra requests allowed per window (default: 10)
- RATE_LIMIT_ENABLED: Enable/disable (default: true)

Example:
    limiter = FixedWindowRateLimiter(RateLimitConfig(rpm=60, burst=10))

    @router.post("/v1/chat/completions", dependencies=[Depends(limiter)])
    async def chat(...):
        ...
"""

from __future__ import annotations

import logging
import math
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
UNKNOWN_CLIENT = "unknown"

KeyFunc = Callable[[Mapping[str, str]], str]


class RateLimitExceededError(HTTPException):
    """Raised when a client exceeds its rate limit."""

    code = "RATE_LIMITED"

    def __init__(self, key: str, limit: int, retry_after: int):
        self.key = key
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"message": "Too Many Requests", "code": self.code},
            headers={"Retry-After": str(retry_after)},
        )


@dataclass
class RateLimitConfig:
    """Configuration for per-client rate limiting."""

    # Steady requests per minute
    rpm: int = field(default_factory=lambda: int(os.getenv("RATE_LIMIT_RPM", "60")))

    # Additional requests allowed on top of rpm within one window
    burst: int = field(default_factory=lambda: int(os.getenv("RATE_LIMIT_BURST", "10")))

    # Enable/disable rate limiting
    enabled: bool = field(
        default_factory=lambda: os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    )

    @property
    def limit(self) -> int:
        return self.rpm + self.burst


@dataclass
class RateWindowEntry:
    """Request counter for one client key.

    Attributes:
        count: Requests seen in the current window
        window_start: Clock reading when the window opened
    """

    count: int
    window_start: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    count: int
    limit: int
    retry_after: int = 0


def default_client_key(headers: Mapping[str, str]) -> str:
    """Derive the client key from proxy headers.

    Uses the first x-forwarded-for entry, then x-real-ip. Callers with
    neither share the "unknown" bucket.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded is not None:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip is not None:
        return real_ip
    return UNKNOWN_CLIENT


class FixedWindowRateLimiter:
    """In-memory fixed-window rate limiter.

    Usage:
        limiter = FixedWindowRateLimiter(RateLimitConfig(rpm=2, burst=0))
        decision = limiter.admit("10.0.0.1")
        if not decision.allowed:
            ...

    Note: counters are per process. Multiple API workers each enforce
    their own window.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        key_func: KeyFunc = default_client_key,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the rate limiter.

        Args:
            config: Rate limit configuration
            key_func: Maps request headers to a client key
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.config = config or RateLimitConfig()
        self.key_func = key_func
        self._clock = clock
        self._windows: dict[str, RateWindowEntry] = {}
        self._last_prune = clock()
        # Prune expired windows every 5 minutes
        self._prune_interval = 300

    def _prune_expired(self, now: float) -> None:
        if now - self._last_prune < self._prune_interval:
            return

        expired = [
            key
            for key, entry in self._windows.items()
            if now - entry.window_start >= WINDOW_SECONDS
        ]
        for key in expired:
            del self._windows[key]
        self._last_prune = now

        logger.debug(
            f"Pruned {len(expired)} rate limit windows. Active clients: {len(self._windows)}"
        )

    def admit(self, key: str) -> RateLimitDecision:
        """Count a request against ``key`` and decide whether to admit it."""
        limit = self.config.limit
        if not self.config.enabled:
            return RateLimitDecision(allowed=True, count=0, limit=limit)

        now = self._clock()
        self._prune_expired(now)

        entry = self._windows.get(key)
        if entry is None or now - entry.window_start >= WINDOW_SECONDS:
            entry = RateWindowEntry(count=0, window_start=now)
            self._windows[key] = entry

        entry.count += 1

        if entry.count > limit:
            remaining = WINDOW_SECONDS - (now - entry.window_start)
            return RateLimitDecision(
                allowed=False,
                count=entry.count,
                limit=limit,
                retry_after=math.ceil(remaining),
            )

        return RateLimitDecision(allowed=True, count=entry.count, limit=limit)

    def check_rate_limit(self, key: str) -> None:
        """Admit a request or raise.

        Raises:
            RateLimitExceededError: If the key is over its limit
        """
        decision = self.admit(key)
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for {key}: {decision.count}/{decision.limit}"
            )
            raise RateLimitExceededError(
                key=key, limit=decision.limit, retry_after=decision.retry_after
            )

    async def __call__(self, request: Request) -> None:
        """FastAPI dependency form of check_rate_limit."""
        self.check_rate_limit(self.key_func(request.headers))

    def get_rate_limit_info(self, key: str) -> dict:
        """Current usage for a key, without counting a request."""
        now = self._clock()
        entry = self._windows.get(key)
        if entry is None or now - entry.window_start >= WINDOW_SECONDS:
            current, resets_in = 0, 0
        else:
            current = entry.count
            resets_in = math.ceil(WINDOW_SECONDS - (now - entry.window_start))

        return {
            "key": key,
            "enabled": self.config.enabled,
            "current_requests": current,
            "limit": self.config.limit,
            "window_seconds": WINDOW_SECONDS,
            "remaining": max(0, self.config.limit - current),
            "resets_in": resets_in,
        }

    def reset(self) -> None:
        """Reset all counters (for testing)."""
        self._windows.clear()
