"""Typed errors raised out of the agent loop."""

from __future__ import annotations

from typing import Optional

from .entities import ErrorCode


class AgentError(Exception):
    """Loop-level failure with a stable error code.

    Attributes:
        code: Caller-visible error code
        message: Human-readable message
        cause: Original exception, if any
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.cause = cause

    def __repr__(self) -> str:
        return f"AgentError(code={self.code.value!r}, message={self.message!r})"
