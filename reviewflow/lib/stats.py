"""
Stats tracking for review runs.

Appends one record per finished run to a stats.jsonl file so latency,
finding counts and token cost can be followed over time.
"""

import json
import logging
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Optional

from reviewflow.lib.types import ReviewRun

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    """Stats for a single review run."""
    timestamp: str
    run_id: str
    repository: str
    pull_request: int
    state: str
    latency_ms: int
    findings: int
    total_score: Optional[float] = None
    token_cost_usd: Optional[float] = None
    plugins: dict[str, str] = field(default_factory=dict)  # plugin id -> status


def record_from_run(run: ReviewRun) -> RunRecord:
    return RunRecord(
        timestamp=(run.finished_at or run.started_at).isoformat(),
        run_id=run.run_id,
        repository=run.repo.full_name,
        pull_request=run.pull.number,
        state=run.state,
        latency_ms=run.stats.latency_ms,
        findings=len(run.findings),
        total_score=round(run.scores.total, 2) if run.scores else None,
        token_cost_usd=run.stats.token_cost_usd,
        plugins={p.plugin_id: p.status for p in run.stats.plugins},
    )


def record_run_stats(stats_file: Path, record: RunRecord) -> None:
    """Append a run record to stats_file."""
    stats_file.parent.mkdir(parents=True, exist_ok=True)
    with open(stats_file, "a") as f:
        f.write(json.dumps(asdict(record)) + "\n")
        f.flush()


def load_run_stats(stats_file: Path) -> list[RunRecord]:
    """Load all run records. Skips corrupted lines."""
    if not stats_file.exists():
        return []

    records = []
    for line_num, line in enumerate(stats_file.read_text().splitlines(), 1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            records.append(RunRecord(**data))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Skipping corrupted stats line {line_num} in {stats_file}: {e}")
    return records


def format_duration(ms: int) -> str:
    """Format milliseconds as a short human string."""
    seconds = ms / 1000.0
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}m {secs}s"
