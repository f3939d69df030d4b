# src/logging/context.py — v2
"""Contextual logging support: attach query_id, fingerprint and stage to log records.

Values live in context variables so that concurrently running queries,
each in its own asyncio task, never see each other's context.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_query_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "query_id", default=None
)
_fingerprint: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "fingerprint", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    query_id: str | None = None
    fingerprint: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        query_id=_query_id.get(),
        fingerprint=_fingerprint.get(),
        stage=_stage.get(),
    )


def set_query_context(query_id: str, fingerprint: str) -> None:
    """Set query-level context (called once per pipeline invocation)."""
    _query_id.set(query_id)
    _fingerprint.set(fingerprint)
    _stage.set(None)


def set_stage_context(stage: str | None) -> None:
    """Set the pipeline stage currently executing."""
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _query_id.set(None)
    _fingerprint.set(None)
    _stage.set(None)
