"""
Shared pieces for LLM provider adapters.

Adapters do not inherit from a common base class; each one is an
independent implementation of the ``LLMClient.chat`` contract. This module
only holds the configuration record, the error type the agent loop
classifies, and small helpers the adapters share.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.entities import StopReason
from ..domain.ports import DeltaCallback

logger = logging.getLogger(__name__)


class LLMProviderError(Exception):
    """Provider call failure.

    Attributes:
        status_code: HTTP status of the failed call, when known. The agent
            loop maps 429 to RATE_LIMITED and 5xx to API_ERROR.
        original_error: Underlying SDK or transport exception
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.original_error = original_error


@dataclass
class LLMProviderConfig:
    """Configuration for LLM providers.

    Attributes:
        api_key: API key for the provider (unused by Ollama)
        model: Model name to use
        base_url: Optional custom base URL
        timeout: Request timeout in seconds
        max_retries: Maximum retry attempts (handled by the vendor SDK)
        temperature: Sampling temperature
        max_tokens: Maximum tokens per response
    """

    api_key: str
    model: str
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 3
    temperature: Optional[float] = None
    max_tokens: int = 4096
    extra: dict[str, Any] = field(default_factory=dict)


async def emit_delta(on_delta: Optional[DeltaCallback], text: str) -> None:
    """Invoke a delta callback that may be sync or async."""
    if on_delta is None or not text:
        return
    result = on_delta(text)
    if inspect.isawaitable(result):
        await result


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Normalise tool arguments that may arrive as a JSON string."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Tool arguments are not valid JSON: {raw[:100]}")
            return {"raw": raw}
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    return {"value": raw}


def map_stop_reason(reason: Optional[str], has_tool_calls: bool) -> StopReason:
    """Map vendor stop/finish reasons onto StopReason."""
    if has_tool_calls or reason in ("tool_use", "tool_calls"):
        return StopReason.TOOL_USE
    if reason in ("max_tokens", "length"):
        return StopReason.MAX_TOKENS
    return StopReason.END_TURN
