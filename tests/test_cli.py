"""Tests for the rf command line."""

from unittest.mock import patch

import pytest

from reviewflow import cli
from reviewflow.analyzers.command import CommandReviewer
from reviewflow.analyzers.patterns import PatternAnalyzer
from reviewflow.lib.config import load_review_config
from reviewflow.workflow.flow import review_pull_request

DIFF = """\
diff --git a/app.py b/app.py
index 83db48f..bf269f4 100644
--- a/app.py
+++ b/app.py
@@ -1,2 +1,3 @@
 import os
+os.system(user_command)
 print(os)
"""


@pytest.fixture
def diff_file(tmp_path):
    path = tmp_path / "pr.diff"
    path.write_text(DIFF)
    return path


@pytest.fixture(autouse=True)
def no_prefect_server():
    # Run the flow body directly; the CLI path is otherwise identical
    with patch("reviewflow.cli.review_pull_request", review_pull_request.fn):
        yield


class TestConfigCommands:
    def test_init_then_validate(self, tmp_path, capsys):
        path = tmp_path / ".ai-review.yml"
        assert cli.main(["config", "init", "--path", str(path)]) == cli.EXIT_OK
        assert load_review_config(path) is not None
        assert cli.main(["config", "validate", str(path)]) == cli.EXIT_OK
        assert "OK" in capsys.readouterr().out

    def test_init_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / ".ai-review.yml"
        path.write_text("scoring: {}\n")
        assert cli.main(["config", "init", "--path", str(path)]) == cli.EXIT_CONFIG
        assert path.read_text() == "scoring: {}\n"

    def test_validate_rejects_bad_weights(self, tmp_path, capsys):
        path = tmp_path / ".ai-review.yml"
        path.write_text("scoring:\n  weights:\n    SECURITY: 0.5\n    QUALITY: 0.5\n    MAINTAINABILITY: 0.5\n"
                        "    PERFORMANCE: 0.0\n    TEST_COVERAGE: 0.0\n")
        assert cli.main(["config", "validate", str(path)]) == cli.EXIT_CONFIG
        assert "sum to 1.0" in capsys.readouterr().err


class TestReviewCommand:
    """Tests for rf review with the local provider."""

    def test_local_review(self, tmp_path, diff_file, capsys):
        out = tmp_path / "out"
        code = cli.main([
            "review", "--diff", str(diff_file), "--repo", "acme/shop", "--pr", "3",
            "--config", str(tmp_path / "missing.yml"), "--out", str(out),
        ])
        assert code == cli.EXIT_OK
        printed = capsys.readouterr().out
        assert "Score:" in printed
        assert "Duration:" in printed
        assert "Shell command via os.system/os.popen" in printed
        assert (out / "feedback" / "check.json").exists()
        assert any((out / "reports").rglob("report.json"))

    def test_fail_under(self, tmp_path, diff_file):
        code = cli.main([
            "review", "--diff", str(diff_file), "--repo", "acme/shop", "--pr", "3",
            "--config", str(tmp_path / "missing.yml"), "--out", str(tmp_path / "out"),
            "--no-feedback", "--fail-under", "100",
        ])
        assert code == cli.EXIT_FAILED
        assert not (tmp_path / "out" / "feedback").exists()

    def test_missing_diff_file_fails_run(self, tmp_path, capsys):
        code = cli.main([
            "review", "--diff", str(tmp_path / "nope.diff"), "--repo", "acme/shop", "--pr", "3",
            "--config", str(tmp_path / "missing.yml"), "--out", str(tmp_path / "out"),
        ])
        assert code == cli.EXIT_FAILED
        assert "Review failed" in capsys.readouterr().err

    def test_unreadable_prompt_file_is_config_error(self, tmp_path, diff_file, capsys):
        config = tmp_path / ".ai-review.yml"
        config.write_text(f"reviewers:\n  command:\n    prompt_file: {tmp_path / 'nope.md'}\n")
        code = cli.main(["review", "--diff", str(diff_file), "--repo", "acme/shop", "--pr", "3",
                         "--config", str(config), "--out", str(tmp_path / "out")])
        assert code == cli.EXIT_CONFIG
        assert "Cannot read prompt template" in capsys.readouterr().err

    def test_bad_repo(self, tmp_path, diff_file):
        code = cli.main(["review", "--diff", str(diff_file), "--repo", "shop", "--pr", "3",
                         "--config", str(tmp_path / "missing.yml")])
        assert code == cli.EXIT_CONFIG

    def test_local_requires_diff(self, tmp_path):
        code = cli.main(["review", "--repo", "acme/shop", "--pr", "3", "--config", str(tmp_path / "missing.yml")])
        assert code == cli.EXIT_CONFIG


class TestBuildPlugins:
    def test_defaults(self):
        analyzers, reviewers = cli.build_plugins(load_review_config(None))
        assert [type(a) for a in analyzers] == [PatternAnalyzer]
        assert reviewers == []

    def test_configured_command_reviewer(self, tmp_path):
        path = tmp_path / ".ai-review.yml"
        path.write_text("reviewers:\n  command:\n    command: my-agent --json\n    batch_size: 5\n")
        _, reviewers = cli.build_plugins(load_review_config(path))
        assert len(reviewers) == 1
        assert isinstance(reviewers[0], CommandReviewer)
        assert reviewers[0].command == "my-agent --json"
        assert reviewers[0].batch_size == 5

    def test_prompt_file_resolved_against_cwd(self, tmp_path):
        (tmp_path / "team-prompt.md").write_text("Review {repository}:\n{segments}\n")
        path = tmp_path / ".ai-review.yml"
        path.write_text("reviewers:\n  command:\n    prompt_file: team-prompt.md\n")
        _, reviewers = cli.build_plugins(load_review_config(path), cwd=tmp_path)
        assert reviewers[0].prompt.source == tmp_path / "team-prompt.md"
        assert reviewers[0].prompt.fields == {"repository", "segments"}
