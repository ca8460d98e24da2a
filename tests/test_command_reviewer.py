"""Tests for reviewflow.analyzers.command module."""

import asyncio
import json
import sys

import pytest

from reviewflow.analyzers.command import (
    CommandReviewer,
    ReviewerError,
    extract_json,
    format_segments,
    parse_agent_output,
)
from reviewflow.lib.costing import UsageLedger
from reviewflow.lib.types import CodeSegment, Dimension, Severity
from reviewflow.pipeline.ports import AnalysisContext


PAYLOAD = {
    "findings": [
        {
            "file": "app.py",
            "start_line": 3,
            "end_line": 4,
            "severity": "major",
            "dimension": "security",
            "title": "User input reaches shell",
            "confidence": 0.9,
        },
        {
            "file": "elsewhere.py",
            "start_line": 1,
            "severity": "MINOR",
            "title": "Not in this batch",
        },
    ]
}

SEGMENT = CodeSegment(
    file_path="app.py",
    content="import os\ncmd = input()\nos.system(cmd)\nprint('done')",
    start_line=1,
    line_count=4,
    language="python",
    added_lines=(2, 3),
)


@pytest.fixture
def context(repo, pull):
    return AnalysisContext(run_id="run-test", repo=repo, pull=pull, usage=UsageLedger())


class TestParseAgentOutput:
    """Tests for parse_agent_output."""

    def test_bare_json(self):
        payload, meta = parse_agent_output(json.dumps(PAYLOAD))
        assert len(payload.findings) == 2
        assert meta == {}

    def test_cli_wrapper_with_fenced_result(self):
        wrapper = {
            "type": "result",
            "result": "Here you go:\n```json\n" + json.dumps(PAYLOAD) + "\n```\nDone.",
            "total_cost_usd": 0.012,
        }
        payload, meta = parse_agent_output(json.dumps(wrapper))
        assert payload.findings[0].severity is Severity.MAJOR
        assert payload.findings[0].dimension is Dimension.SECURITY
        assert meta["total_cost_usd"] == 0.012

    def test_defaults_applied(self):
        payload, _ = parse_agent_output(json.dumps(PAYLOAD))
        issue = payload.findings[1]
        assert issue.dimension is Dimension.QUALITY
        assert issue.confidence == 0.5

    def test_invalid_json(self):
        with pytest.raises(ReviewerError, match="Invalid JSON"):
            parse_agent_output("I could not review this.")

    def test_schema_violation(self):
        bad = {"findings": [{"file": "a.py", "start_line": 0, "severity": "MAJOR", "title": "x"}]}
        with pytest.raises(ReviewerError, match="failed validation"):
            parse_agent_output(json.dumps(bad))

    def test_unknown_severity(self):
        bad = {"findings": [{"file": "a.py", "start_line": 1, "severity": "BLOCKER", "title": "x"}]}
        with pytest.raises(ReviewerError):
            parse_agent_output(json.dumps(bad))

    def test_extract_json_without_fence(self):
        assert extract_json('  {"findings": []}  ') == '{"findings": []}'


class TestCommandReviewer:
    """Tests for CommandReviewer."""

    def test_format_segments_marks_added_lines(self):
        text = format_segments([SEGMENT])
        assert "### app.py (python) lines 1-4" in text
        assert "    2 + cmd = input()" in text
        assert "    1   import os" in text

    def test_supports_language(self):
        assert CommandReviewer().supports_language("python")
        assert not CommandReviewer().supports_language("text")
        assert not CommandReviewer(languages=["Go"]).supports_language("python")
        assert CommandReviewer(languages=["Go"]).supports_language("go")

    def test_review_batch_builds_findings(self, context, monkeypatch):
        reviewer = CommandReviewer(model="claude-3-5-sonnet")
        prompts = []

        async def fake_agent(prompt):
            prompts.append(prompt)
            return json.dumps({"result": json.dumps(PAYLOAD), "usage": {"input_tokens": 1000, "output_tokens": 100}})

        monkeypatch.setattr(reviewer, "_run_agent", fake_agent)
        findings = asyncio.run(reviewer.review_batch([SEGMENT], context))

        assert len(findings) == 1
        f = findings[0]
        assert (f.file_path, f.start_line, f.end_line) == ("app.py", 3, 4)
        assert f.sources == frozenset({"command"})
        assert f.confidence == 0.9
        assert "pull request #42 of acme/shop" in prompts[0]
        assert context.usage.total_tokens == (1000, 100)
        assert context.usage.total_cost_usd == pytest.approx(0.003 + 0.0015)

    def test_batches_segments(self, context, monkeypatch):
        reviewer = CommandReviewer(batch_size=2)
        calls = []

        async def fake_agent(prompt):
            calls.append(prompt)
            return '{"findings": []}'

        monkeypatch.setattr(reviewer, "_run_agent", fake_agent)
        asyncio.run(reviewer.review_batch([SEGMENT] * 5, context))
        assert len(calls) == 3
        assert context.usage.total_cost_usd is None

    def test_nonzero_exit_raises(self, context):
        reviewer = CommandReviewer(command=f'"{sys.executable}" -c "import sys; sys.exit(3)"')
        with pytest.raises(ReviewerError, match="exited 3"):
            asyncio.run(reviewer.review_batch([SEGMENT], context))

    def test_agent_receives_prompt_on_stdin(self, context):
        script = "import sys, json; sys.stdin.read(); print(json.dumps({'findings': []}))"
        reviewer = CommandReviewer(command=f'"{sys.executable}" -c "{script}"')
        assert asyncio.run(reviewer.review_batch([SEGMENT], context)) == []
