"""Tests for the review_pull_request flow."""

import asyncio

from reviewflow.adapters.base import AdapterRouter
from reviewflow.adapters.local import LocalDiffAdapter
from reviewflow.analyzers.patterns import PatternAnalyzer
from reviewflow.lib.config import ReviewConfig, ReportConfig
from reviewflow.lib.stats import load_run_stats
from reviewflow.workflow.flow import review_pull_request
from reviewflow.workflow.orchestrator import ReviewOrchestrator

DIFF = """\
diff --git a/settings.py b/settings.py
index 83db48f..bf269f4 100644
--- a/settings.py
+++ b/settings.py
@@ -1,2 +1,3 @@
 DEBUG = False
+API_KEY = "do-not-commit-this-value"
 ALLOWED_HOSTS = []
"""


class TestReviewFlow:
    """Runs the flow body directly through .fn, without a Prefect server."""

    def test_local_review_end_to_end(self, tmp_path, repo, pull):
        diff = tmp_path / "pr.diff"
        diff.write_text(DIFF)
        feedback_dir = tmp_path / "feedback"
        config = ReviewConfig(reports=ReportConfig(output_dir=tmp_path / "reports"))
        orchestrator = ReviewOrchestrator(
            AdapterRouter([LocalDiffAdapter(diff, feedback_dir)]),
            [PatternAnalyzer()],
            [],
            config,
        )
        stats_file = tmp_path / "stats.jsonl"

        run = asyncio.run(review_pull_request.fn(orchestrator, repo, pull, stats_file))

        assert run.state == "done"
        assert [f.start_line for f in run.findings] == [2]
        assert run.scores.total < 100.0
        assert (tmp_path / "reports" / run.run_id / "report.sarif").exists()
        assert (feedback_dir / "check.json").exists()
        assert (feedback_dir / "summary-reviewflow-summary.md").exists()
        records = load_run_stats(stats_file)
        assert [r.run_id for r in records] == [run.run_id]
