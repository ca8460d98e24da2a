"""Tests for reviewflow.pipeline.feedback module."""

import pytest

from reviewflow.lib.config import DEFAULT_WEIGHTS, FeedbackConfig
from reviewflow.lib.types import Dimension, Scores, Severity
from reviewflow.pipeline.feedback import (
    SUMMARY_COMMENT_KEY,
    build_check_summary,
    build_inline_comments,
    build_summary_comment,
    dimension_icon,
    format_inline_body,
    publish_feedback,
)


def scores_with(**dims) -> Scores:
    dimensions = {d: 100.0 for d in Dimension}
    for name, value in dims.items():
        dimensions[Dimension.parse(name)] = value
    total = sum(dimensions[d] * DEFAULT_WEIGHTS[d] for d in Dimension)
    return Scores(total=total, dimensions=dimensions, weights=dict(DEFAULT_WEIGHTS))


class RecordingAdapter:
    provider = "local"

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.calls = []

    def _call(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")

    def upsert_check(self, repo, pull, summary):
        self._call("check", summary)

    def post_inline_comments(self, repo, pull, comments):
        self._call("inline_comments", comments)

    def create_or_update_summary_comment(self, repo, pull, key, body):
        self._call("summary_comment", key, body)


class TestCheckSummary:
    """Tests for build_check_summary."""

    def test_high_score_succeeds(self, make_run):
        run = make_run(scores=scores_with())
        check = build_check_summary(run, FeedbackConfig())
        assert check.conclusion == "success"
        assert check.title == "AI Code Review - A (100.0/100)"

    def test_problem_area_fails(self, make_run):
        run = make_run(scores=scores_with(security=40.0))
        check = build_check_summary(run, FeedbackConfig())
        assert check.conclusion == "failure"
        assert "SECURITY: 40.0" in check.summary

    def test_middling_without_problems_succeeds(self, make_run):
        run = make_run(scores=scores_with(**{d.value: 80.0 for d in Dimension}))
        assert build_check_summary(run, FeedbackConfig()).conclusion == "success"

    def test_unscored_run_is_neutral(self, make_run):
        assert build_check_summary(make_run(), FeedbackConfig()).conclusion == "neutral"

    def test_details_url_substitutes_run_id(self, make_run):
        config = FeedbackConfig(details_url="https://ci.example.com/reviews/{run_id}")
        check = build_check_summary(make_run(scores=scores_with()), config)
        assert check.details_url == "https://ci.example.com/reviews/run-20250101-120000-abcdef"


class TestInlineComments:
    """Tests for build_inline_comments."""

    def test_filters_by_min_confidence(self, make_finding):
        findings = [
            make_finding(id="low", confidence=0.5),
            make_finding(id="high", start_line=20, end_line=20, confidence=0.9),
        ]
        comments = build_inline_comments(findings, FeedbackConfig(min_confidence=0.7))
        assert [c.line for c in comments] == [20]

    def test_most_severe_first_and_capped(self, make_finding):
        findings = [
            make_finding(id="info", start_line=1, end_line=1, severity=Severity.INFO),
            make_finding(id="crit", start_line=2, end_line=2, severity=Severity.CRITICAL),
            make_finding(id="major", start_line=3, end_line=3, severity=Severity.MAJOR),
        ]
        comments = build_inline_comments(findings, FeedbackConfig(max_inline_comments=2))
        assert [c.line for c in comments] == [2, 3]

    def test_zero_cap_posts_nothing(self, make_finding):
        assert build_inline_comments([make_finding()], FeedbackConfig(max_inline_comments=0)) == []

    def test_multi_line_range(self, make_finding):
        comment = build_inline_comments([make_finding(start_line=5, end_line=9)], FeedbackConfig())[0]
        assert (comment.start_line, comment.line) == (5, 9)

        single = build_inline_comments([make_finding(start_line=5, end_line=5)], FeedbackConfig())[0]
        assert single.start_line is None

    def test_body_mentions_confidence_and_sources(self, make_finding):
        body = format_inline_body(make_finding(
            confidence=0.85, sources=frozenset({"patterns", "command"}), suggestion="Use a constant",
        ))
        assert "*Confidence: 85% | Source: command, patterns*" in body
        assert "**Suggestion:** Use a constant" in body


class TestSummaryComment:
    def test_contains_scores_and_recommendations(self, make_run, make_finding):
        run = make_run(
            scores=scores_with(security=50.0),
            findings=[make_finding(severity=Severity.CRITICAL)],
        )
        body = build_summary_comment(run)
        assert "| SECURITY | 50.0 | ❌ |" in body
        assert "### Problem areas" in body
        assert "🔴 CRITICAL 1" in body

    def test_dimension_icons(self):
        assert dimension_icon(95) == "✅"
        assert dimension_icon(75) == "⚠️"
        assert dimension_icon(10) == "❌"


class TestPublishFeedback:
    """Tests for publish_feedback."""

    def test_publishes_every_step(self, make_run, make_finding):
        adapter = RecordingAdapter()
        run = make_run(scores=scores_with(), findings=[make_finding(confidence=0.9)])
        result = publish_feedback(adapter, run, FeedbackConfig())
        assert result.ok
        assert result.published == ["check", "inline_comments", "summary_comment"]
        assert adapter.calls[-1][1][0] == SUMMARY_COMMENT_KEY

    def test_no_inline_call_without_eligible_findings(self, make_run):
        adapter = RecordingAdapter()
        result = publish_feedback(adapter, make_run(scores=scores_with()), FeedbackConfig())
        assert "inline_comments" not in result.published
        assert [name for name, _ in adapter.calls] == ["check", "summary_comment"]

    def test_failed_step_does_not_stop_the_rest(self, make_run, make_finding, caplog):
        adapter = RecordingAdapter(fail_on={"check"})
        run = make_run(scores=scores_with(), findings=[make_finding(confidence=0.9)])
        result = publish_feedback(adapter, run, FeedbackConfig())
        assert not result.ok
        assert result.failed == {"check": "check exploded"}
        assert result.published == ["inline_comments", "summary_comment"]
        assert "Feedback step 'check' failed" in caplog.text

    def test_disabled_publishes_nothing(self, make_run):
        adapter = RecordingAdapter()
        result = publish_feedback(adapter, make_run(scores=scores_with()), FeedbackConfig(enabled=False))
        assert result.published == []
        assert adapter.calls == []

    @pytest.mark.parametrize("flag", ["check", "inline_comments", "summary_comment"])
    def test_individual_steps_can_be_disabled(self, make_run, make_finding, flag):
        adapter = RecordingAdapter()
        run = make_run(scores=scores_with(), findings=[make_finding(confidence=0.9)])
        result = publish_feedback(adapter, run, FeedbackConfig(**{flag: False}))
        assert flag not in result.published
