"""
Lightweight span tracing.

A process-wide tracer that times named operations (provider calls, tool
executions, agent runs) and logs them as span records. Disabled unless
TRACING_ENABLED=true, in which case ``span`` is a no-op context manager.

Usage:
    init_tracing()

    async with get_tracer().span("llm.chat", iteration=1):
        response = await llm.chat(messages, tools)

Environment Variables:
- TRACING_ENABLED: Enable span logging (default: false)
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

logger = logging.getLogger(__name__)

SERVICE_NAME = "opsagent"


@dataclass
class SpanRecord:
    """A completed span."""

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    error: Optional[str] = None


class Tracer:
    """Process-wide tracer with an explicit init/reset lifecycle."""

    def __init__(self) -> None:
        self._initialized = False
        self.enabled = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self, enabled: Optional[bool] = None) -> None:
        """Initialize once; later calls are ignored until reset()."""
        if self._initialized:
            return
        if enabled is None:
            enabled = os.getenv("TRACING_ENABLED", "false").lower() == "true"
        self.enabled = enabled
        self._initialized = True
        if enabled:
            logger.info(f"Tracing enabled for {SERVICE_NAME}")

    def reset(self) -> None:
        """Return to the uninitialized state (tests only)."""
        self._initialized = False
        self.enabled = False

    @asynccontextmanager
    async def span(self, name: str, **attributes: Any) -> AsyncIterator[SpanRecord]:
        record = SpanRecord(name=name, attributes=attributes)
        if not self.enabled:
            yield record
            return

        start = time.perf_counter()
        try:
            yield record
        except BaseException as e:
            record.error = f"{type(e).__name__}: {e}"
            raise
        finally:
            record.duration_ms = (time.perf_counter() - start) * 1000
            logger.info(
                f"span {name} took {record.duration_ms:.1f}ms",
                extra={
                    "span": name,
                    "duration_ms": round(record.duration_ms, 3),
                    "span_error": record.error,
                    **{f"attr_{k}": v for k, v in record.attributes.items()},
                },
            )


_tracer = Tracer()


def init_tracing(enabled: Optional[bool] = None) -> Tracer:
    _tracer.init(enabled)
    return _tracer


def get_tracer() -> Tracer:
    return _tracer


def reset_tracing() -> None:
    _tracer.reset()
