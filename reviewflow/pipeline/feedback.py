"""
Platform feedback: check status, inline comments and the summary comment.

Builders are pure; publish_feedback pushes their output through an SCM
adapter. Publishing happens after scores exist, so a failing step is logged
and reported back, never raised.
"""

import logging
from dataclasses import dataclass, field

from reviewflow.lib.config import FeedbackConfig, ScoringConfig
from reviewflow.lib.types import CheckSummary, Dimension, Finding, InlineComment, ReviewRun
from reviewflow.pipeline.aggregator import canonical_key
from reviewflow.pipeline.scoring import ScoreSummary, summarize_scores

logger = logging.getLogger(__name__)


SUMMARY_COMMENT_KEY = "reviewflow-summary"

PASSING_SCORE = 90.0

_SEVERITY_ICONS = {"CRITICAL": "🔴", "MAJOR": "🟠", "MINOR": "🟡", "INFO": "🔵"}


def dimension_icon(score: float) -> str:
    if score >= 90:
        return "✅"
    if score >= 70:
        return "⚠️"
    return "❌"


def _details_url(config: FeedbackConfig, run_id: str) -> str | None:
    if not config.details_url:
        return None
    return config.details_url.replace("{run_id}", run_id)


def build_check_summary(run: ReviewRun, config: FeedbackConfig, summary: ScoreSummary | None = None) -> CheckSummary:
    """Check payload for a scored run.

    Conclusion is success at or above PASSING_SCORE, failure when any
    dimension is a problem area, success otherwise.
    """
    if run.scores is None:
        return CheckSummary(
            title="AI Code Review - not scored",
            conclusion="neutral",
            summary="The review did not produce scores.",
            details_url=_details_url(config, run.run_id),
        )

    summary = summary or summarize_scores(run.scores, run.findings)
    total = run.scores.total
    if total >= PASSING_SCORE:
        conclusion = "success"
    elif summary.has_problems:
        conclusion = "failure"
    else:
        conclusion = "success"

    lines = [f"**Overall score:** {total:.1f}/100 (grade {summary.grade})", ""]
    for dim in Dimension:
        lines.append(f"- {dim.value}: {run.scores.dimensions[dim]:.1f}")
    lines.append("")
    lines.append(f"{len(run.findings)} findings, {summary.critical_findings} critical.")

    return CheckSummary(
        title=f"AI Code Review - {summary.grade} ({total:.1f}/100)",
        conclusion=conclusion,
        summary="\n".join(lines),
        details_url=_details_url(config, run.run_id),
    )


def format_inline_body(finding: Finding) -> str:
    body = [f"**{finding.severity.value}** ({finding.dimension.value}) {finding.title}"]
    if finding.evidence:
        body.append(finding.evidence)
    if finding.suggestion:
        body.append(f"**Suggestion:** {finding.suggestion}")
    if finding.patch:
        body.append(f"```suggestion\n{finding.patch}\n```")
    sources = ", ".join(sorted(finding.sources))
    body.append(f"*Confidence: {finding.confidence:.0%} | Source: {sources}*")
    return "\n\n".join(body)


def build_inline_comments(findings: list[Finding], config: FeedbackConfig) -> list[InlineComment]:
    """Inline comments for confident findings, most severe first, capped."""
    eligible = [f for f in findings if f.confidence >= config.min_confidence]
    eligible.sort(key=lambda f: (-f.severity.rank, -f.confidence, canonical_key(f)))
    comments = []
    for finding in eligible[:config.max_inline_comments]:
        comments.append(InlineComment(
            file_path=finding.file_path,
            line=finding.end_line,
            start_line=finding.start_line if finding.start_line < finding.end_line else None,
            body=format_inline_body(finding),
        ))
    return comments


def build_summary_comment(run: ReviewRun, summary: ScoreSummary | None = None) -> str:
    """Markdown body of the anchored summary comment."""
    if run.scores is None:
        return f"## AI Code Review\n\nRun `{run.run_id}` finished without scores.\n"
    summary = summary or summarize_scores(run.scores, run.findings)

    lines = [
        "## AI Code Review",
        "",
        f"**Overall: {run.scores.total:.1f}/100 (grade {summary.grade})**",
        "",
        "| Dimension | Score | |",
        "|---|---|---|",
    ]
    for dim in Dimension:
        score = run.scores.dimensions[dim]
        lines.append(f"| {dim.value} | {score:.1f} | {dimension_icon(score)} |")

    if summary.problem_areas:
        lines += ["", "### Problem areas", ""]
        lines += [f"- {d.value}" for d in summary.problem_areas]

    lines += ["", "### Recommendations", ""]
    lines += [f"- {r}" for r in summary.recommendations]

    if run.findings:
        counts: dict[str, int] = {}
        for f in run.findings:
            counts[f.severity.value] = counts.get(f.severity.value, 0) + 1
        breakdown = ", ".join(
            f"{_SEVERITY_ICONS[sev]} {sev} {counts[sev]}"
            for sev in ("CRITICAL", "MAJOR", "MINOR", "INFO") if sev in counts
        )
        lines += ["", f"**Findings:** {len(run.findings)} ({breakdown})"]

    stats = run.stats
    lines += [
        "",
        f"Files changed: {stats.files_changed} | +{stats.lines_added} / -{stats.lines_deleted} | "
        f"Latency: {stats.latency_ms} ms",
    ]
    if stats.token_cost_usd is not None:
        lines.append(f"Token cost: ${stats.token_cost_usd:.4f}")
    lines += ["", f"<sub>Run `{run.run_id}`</sub>", ""]
    return "\n".join(lines)


@dataclass
class FeedbackResult:
    published: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def publish_feedback(adapter, run: ReviewRun, config: FeedbackConfig, scoring: ScoringConfig | None = None) -> FeedbackResult:
    """Push check, inline comments and summary comment through adapter.

    Blocking; the orchestrator runs it in a worker thread. Each step is
    attempted even if an earlier one failed.
    """
    result = FeedbackResult()
    if not config.enabled:
        return result

    summary = summarize_scores(run.scores, run.findings, scoring) if run.scores else None
    steps = []
    if config.check:
        steps.append(("check", lambda: adapter.upsert_check(run.repo, run.pull, build_check_summary(run, config, summary))))
    if config.inline_comments:
        comments = build_inline_comments(run.findings, config)
        if comments:
            steps.append(("inline_comments", lambda: adapter.post_inline_comments(run.repo, run.pull, comments)))
    if config.summary_comment:
        body = build_summary_comment(run, summary)
        steps.append(("summary_comment", lambda: adapter.create_or_update_summary_comment(run.repo, run.pull, SUMMARY_COMMENT_KEY, body)))

    for name, step in steps:
        try:
            step()
            result.published.append(name)
        except Exception as e:
            logger.warning(f"[{run.run_id}] Feedback step '{name}' failed: {e}")
            result.failed[name] = str(e)
    return result
