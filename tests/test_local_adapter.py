"""Tests for reviewflow.adapters.local module."""

import json

import pytest

from reviewflow.adapters.base import AdapterError, AdapterRouter
from reviewflow.adapters.local import LocalDiffAdapter, parse_unified_diff
from reviewflow.lib.types import ChangeKind, CheckSummary, InlineComment


SAMPLE_DIFF = """\
diff --git a/app.py b/app.py
index 83db48f..bf269f4 100644
--- a/app.py
+++ b/app.py
@@ -1,3 +1,4 @@
 import os
+import subprocess
 
 def main():
diff --git a/new.py b/new.py
new file mode 100644
index 0000000..e69de29
--- /dev/null
+++ b/new.py
@@ -0,0 +1,2 @@
+x = 1
+y = 2
diff --git a/old.py b/old.py
deleted file mode 100644
index e69de29..0000000
--- a/old.py
+++ /dev/null
@@ -1 +0,0 @@
-gone = True
"""


class TestParseUnifiedDiff:
    """Tests for parse_unified_diff."""

    def test_one_hunk_per_file(self):
        hunks = parse_unified_diff(SAMPLE_DIFF)
        assert [h.file_path for h in hunks] == ["app.py", "new.py", "old.py"]

    def test_change_kinds(self):
        kinds = {h.file_path: h.change for h in parse_unified_diff(SAMPLE_DIFF)}
        assert kinds == {"app.py": ChangeKind.MODIFIED, "new.py": ChangeKind.ADDED, "old.py": ChangeKind.DELETED}

    def test_line_counts(self):
        hunks = {h.file_path: h for h in parse_unified_diff(SAMPLE_DIFF)}
        assert (hunks["app.py"].lines_added, hunks["app.py"].lines_deleted) == (1, 0)
        assert (hunks["new.py"].lines_added, hunks["new.py"].lines_deleted) == (2, 0)
        assert (hunks["old.py"].lines_added, hunks["old.py"].lines_deleted) == (0, 1)

    def test_patch_keeps_hunk_header(self):
        app = parse_unified_diff(SAMPLE_DIFF)[0]
        assert app.patch.startswith("@@ -1,3 +1,4 @@")
        assert "+import subprocess" in app.patch

    def test_empty_diff(self):
        assert parse_unified_diff("") == []


class TestLocalDiffAdapter:
    """Tests for LocalDiffAdapter."""

    def test_list_diff_reads_file(self, tmp_path, repo, pull):
        diff = tmp_path / "pr.diff"
        diff.write_text(SAMPLE_DIFF)
        adapter = LocalDiffAdapter(diff, tmp_path / "out")
        assert len(adapter.list_diff(repo, pull)) == 3

    def test_missing_diff_raises_adapter_error(self, tmp_path, repo, pull):
        adapter = LocalDiffAdapter(tmp_path / "missing.diff", tmp_path / "out")
        with pytest.raises(AdapterError) as exc_info:
            adapter.list_diff(repo, pull)
        assert exc_info.value.operation == "list_diff"
        assert str(exc_info.value).startswith("[local list_diff]")

    def test_feedback_written_to_output_dir(self, tmp_path, repo, pull):
        out = tmp_path / "out"
        adapter = LocalDiffAdapter(tmp_path / "pr.diff", out)
        adapter.upsert_check(repo, pull, CheckSummary(title="AI Code Review - A", conclusion="success", summary="ok"))
        adapter.post_inline_comments(repo, pull, [InlineComment(file_path="app.py", line=2, body="hi")])
        adapter.create_or_update_summary_comment(repo, pull, "reviewflow-summary", "first")
        adapter.create_or_update_summary_comment(repo, pull, "reviewflow-summary", "second")

        assert json.loads((out / "check.json").read_text())["conclusion"] == "success"
        assert json.loads((out / "comments.json").read_text())[0]["line"] == 2
        assert (out / "summary-reviewflow-summary.md").read_text() == "second"


class TestAdapterRouter:
    def test_resolve_is_case_insensitive(self, tmp_path):
        adapter = LocalDiffAdapter(tmp_path / "x.diff", tmp_path)
        router = AdapterRouter([adapter])
        assert router.resolve("LOCAL") is adapter
        assert router.providers == ["local"]

    def test_unknown_provider(self, tmp_path):
        router = AdapterRouter([LocalDiffAdapter(tmp_path / "x.diff", tmp_path)])
        with pytest.raises(AdapterError, match="No adapter for provider 'gitlab'"):
            router.resolve("gitlab")
