# tests/unit/tracking/test_unit_query_log.py — v1
"""Tests for tracking/query_log.py."""

from __future__ import annotations

import json

import pytest

from evidencerank.config.settings import Settings
from evidencerank.core.models import LogRecord
from evidencerank.tracking.query_log import (
    BaseLogSink,
    InMemoryLogSink,
    JsonlLogSink,
    NullLogSink,
    create_log_sink,
    emit_log_record,
)


def _record(**overrides) -> LogRecord:
    fields = dict(
        query_id="q1", fingerprint="fp", question_hash="qh",
        k=5, min_similarity=0.5, result_count=2,
        fallbacks=["hybrid_empty", "lexical"], fallback_used=True,
        strategy="lexical-fallback",
    )
    fields.update(overrides)
    return LogRecord(**fields)


class BrokenSink(BaseLogSink):
    async def write(self, record: LogRecord) -> None:
        raise OSError("disk full")


class TestSinks:
    @pytest.mark.asyncio
    async def test_in_memory(self):
        sink = InMemoryLogSink()
        await sink.write(_record())
        assert [r.query_id for r in sink.records] == ["q1"]

    @pytest.mark.asyncio
    async def test_jsonl_appends(self, tmp_path):
        sink = JsonlLogSink(tmp_path / "logs" / "queries.jsonl")
        await sink.write(_record(query_id="q1"))
        await sink.write(_record(query_id="q2"))
        lines = sink.path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["query_id"] for line in lines] == ["q1", "q2"]
        assert json.loads(lines[0])["fallbacks"] == ["hybrid_empty", "lexical"]

    @pytest.mark.asyncio
    async def test_null(self):
        await NullLogSink().write(_record())


class TestEmitLogRecord:
    @pytest.mark.asyncio
    async def test_success(self):
        sink = InMemoryLogSink()
        assert await emit_log_record(sink, _record()) is True
        assert len(sink.records) == 1

    @pytest.mark.asyncio
    async def test_failure_absorbed(self, caplog):
        with caplog.at_level("WARNING"):
            assert await emit_log_record(BrokenSink(), _record()) is False
        assert "disk full" in caplog.text


class TestCreateLogSink:
    def test_default_none(self):
        assert isinstance(create_log_sink(), NullLogSink)

    def test_memory(self):
        s = Settings(_env_file=None, query_log_sink="memory")
        assert isinstance(create_log_sink(s), InMemoryLogSink)

    def test_jsonl(self, tmp_path):
        s = Settings(_env_file=None, query_log_path=tmp_path / "q.jsonl")
        sink = create_log_sink(s)
        assert isinstance(sink, JsonlLogSink)
        assert sink.path == tmp_path / "q.jsonl"
