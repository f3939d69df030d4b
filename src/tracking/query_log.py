# src/tracking/query_log.py — v1
"""Query log sinks: persist one LogRecord per query.

Writing is fire-and-forget from the pipeline's point of view; use
emit_log_record() so a failing sink never fails a query.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from evidencerank.config.settings import Settings
from evidencerank.core.models import LogRecord

logger = logging.getLogger(__name__)


class BaseLogSink(ABC):
    """Write-only destination for query log records."""

    @abstractmethod
    async def write(self, record: LogRecord) -> None:
        """Persist a record."""


class NullLogSink(BaseLogSink):
    """Discards records."""

    async def write(self, record: LogRecord) -> None:
        return None


class InMemoryLogSink(BaseLogSink):
    """Accumulates records in memory (tests, embedding in other apps)."""

    def __init__(self) -> None:
        self._records: list[LogRecord] = []

    async def write(self, record: LogRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> list[LogRecord]:
        """All written records."""
        return list(self._records)


class JsonlLogSink(BaseLogSink):
    """Appends records to a JSON Lines file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def write(self, record: LogRecord) -> None:
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False)
        async with self._lock:
            await asyncio.to_thread(self._append, line)

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


async def emit_log_record(sink: BaseLogSink, record: LogRecord) -> bool:
    """Write a record, logging and absorbing sink failures.

    Returns:
        True if the sink accepted the record.
    """
    try:
        await sink.write(record)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("Query log sink %s failed: %s", type(sink).__name__, e)
        return False
    return True


def create_log_sink(settings: Settings | None = None) -> BaseLogSink:
    """Instantiate the configured query log sink."""
    if settings is None or settings.query_log_sink == "none":
        return NullLogSink()
    if settings.query_log_sink == "memory":
        return InMemoryLogSink()
    if settings.query_log_sink == "jsonl":
        return JsonlLogSink(settings.query_log_path)
    raise ValueError(f"Unsupported query log sink: {settings.query_log_sink!r}")
