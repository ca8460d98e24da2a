"""Tests for the stats module."""

from datetime import datetime, timezone

from reviewflow.lib.config import DEFAULT_WEIGHTS
from reviewflow.lib.stats import (
    RunRecord,
    format_duration,
    load_run_stats,
    record_from_run,
    record_run_stats,
)
from reviewflow.lib.types import PluginOutcome, RunStats, Scores


def record(run_id="run-1", **overrides):
    data = dict(
        timestamp="2025-01-01T12:00:00+00:00",
        run_id=run_id,
        repository="acme/shop",
        pull_request=42,
        state="done",
        latency_ms=1500,
        findings=3,
    )
    data.update(overrides)
    return RunRecord(**data)


class TestRecordFromRun:
    def test_copies_run_fields(self, make_run, make_finding):
        stats = RunStats(latency_ms=2300, token_cost_usd=0.02)
        stats.plugins.append(PluginOutcome(plugin_id="patterns", kind="static", status="ok", elapsed_seconds=0.1))
        stats.plugins.append(PluginOutcome(plugin_id="command", kind="ai", status="timeout", elapsed_seconds=60))
        run = make_run(
            state="done",
            findings=[make_finding()],
            scores=Scores.perfect(DEFAULT_WEIGHTS),
            stats=stats,
            finished_at=datetime(2025, 1, 1, 12, 0, 3, tzinfo=timezone.utc),
        )
        rec = record_from_run(run)
        assert rec.timestamp == "2025-01-01T12:00:03+00:00"
        assert rec.repository == "acme/shop"
        assert rec.total_score == 100.0
        assert rec.findings == 1
        assert rec.plugins == {"patterns": "ok", "command": "timeout"}

    def test_unscored_run(self, make_run):
        rec = record_from_run(make_run())
        assert rec.total_score is None
        assert rec.timestamp == "2025-01-01T12:00:00+00:00"


class TestStatsFile:
    """Tests for recording and loading stats.jsonl."""

    def test_record_and_load(self, tmp_path):
        stats_file = tmp_path / "nested" / "stats.jsonl"
        record_run_stats(stats_file, record("run-1", total_score=88.5))
        record_run_stats(stats_file, record("run-2", plugins={"patterns": "ok"}))

        loaded = load_run_stats(stats_file)
        assert [r.run_id for r in loaded] == ["run-1", "run-2"]
        assert loaded[0].total_score == 88.5
        assert loaded[1].plugins == {"patterns": "ok"}

    def test_missing_file(self, tmp_path):
        assert load_run_stats(tmp_path / "nope.jsonl") == []

    def test_skips_corrupted_lines(self, tmp_path, caplog):
        stats_file = tmp_path / "stats.jsonl"
        record_run_stats(stats_file, record("run-1"))
        with open(stats_file, "a") as f:
            f.write("{not json\n\n")
            f.write('{"run_id": "missing-fields"}\n')
        record_run_stats(stats_file, record("run-2"))

        loaded = load_run_stats(stats_file)
        assert [r.run_id for r in loaded] == ["run-1", "run-2"]
        assert "Skipping corrupted stats line 2" in caplog.text


class TestFormatDuration:
    def test_seconds(self):
        assert format_duration(1500) == "1.5s"

    def test_minutes(self):
        assert format_duration(125_000) == "2m 5s"
