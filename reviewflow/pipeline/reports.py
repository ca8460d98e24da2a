"""
Report rendering.

The default renderer produces JSON, Markdown, HTML and SARIF 2.1.0 for a
scored run, and writes them to the configured output directory.
"""

import hashlib
import html
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from reviewflow.lib.config import ReportConfig, ScoringConfig
from reviewflow.lib.types import Artifacts, Dimension, Finding, ReviewRun, Severity
from reviewflow.lib.validate import ensure_valid
from reviewflow.pipeline.feedback import dimension_icon
from reviewflow.pipeline.scoring import summarize_scores

logger = logging.getLogger(__name__)


TOOL_NAME = "reviewflow"
SARIF_VERSION = "2.1.0"
SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"

SARIF_LEVELS = {
    Severity.INFO: "note",
    Severity.MINOR: "warning",
    Severity.MAJOR: "error",
    Severity.CRITICAL: "error",
}

REPORT_FILENAMES = {
    "json": "report.json",
    "markdown": "report.md",
    "html": "report.html",
    "sarif": "report.sarif",
}


class ReportRenderer(ABC):
    @abstractmethod
    def render(self, run: ReviewRun) -> Artifacts: ...


def finding_to_dict(f: Finding) -> dict:
    return {
        "id": f.id,
        "file": f.file_path,
        "start_line": f.start_line,
        "end_line": f.end_line,
        "severity": f.severity.value,
        "dimension": f.dimension.value,
        "title": f.title,
        "evidence": f.evidence,
        "suggestion": f.suggestion,
        "patch": f.patch,
        "confidence": f.confidence,
        "sources": sorted(f.sources),
    }


def report_dict(run: ReviewRun, scoring: ScoringConfig | None = None) -> dict:
    data = {
        "run_id": run.run_id,
        "repository": run.repo.full_name,
        "provider": run.repo.provider,
        "pull_request": run.pull.number,
        "title": run.pull.title,
        "head_sha": run.pull.head_sha,
        "started_at": run.started_at.isoformat(),
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "providers_used": list(run.providers_used),
        "scores": run.scores.to_dict() if run.scores else None,
        "findings": [finding_to_dict(f) for f in run.findings],
        "stats": {
            "files_changed": run.stats.files_changed,
            "lines_added": run.stats.lines_added,
            "lines_deleted": run.stats.lines_deleted,
            "segments": run.stats.segments,
            "latency_ms": run.stats.latency_ms,
            "token_cost_usd": run.stats.token_cost_usd,
            "plugins": [
                {"id": p.plugin_id, "kind": p.kind, "status": p.status,
                 "elapsed_seconds": round(p.elapsed_seconds, 3), "findings": p.findings}
                for p in run.stats.plugins
            ],
        },
    }
    if run.scores:
        data["grade"] = summarize_scores(run.scores, run.findings, scoring).grade
    return data


def sarif_rule_id(f: Finding) -> str:
    digest = hashlib.sha1(f"{f.id}:{f.title}".encode()).hexdigest()[:8]
    return f"{f.dimension.value.lower()}.{f.severity.value.lower()}.{digest}"


def sarif_results(findings: list[Finding]) -> list[dict]:
    """One SARIF result per finding."""
    results = []
    for f in findings:
        message = f.title if not f.evidence else f"{f.title}: {f.evidence}"
        results.append({
            "ruleId": sarif_rule_id(f),
            "level": SARIF_LEVELS[f.severity],
            "message": {"text": message},
            "locations": [{
                "physicalLocation": {
                    "artifactLocation": {"uri": f.file_path},
                    "region": {"startLine": f.start_line, "endLine": f.end_line},
                },
            }],
            "properties": {
                "confidence": f.confidence,
                "dimension": f.dimension.value,
                "severity": f.severity.value,
                "sources": sorted(f.sources),
            },
        })
    return results


def sarif_document(run: ReviewRun) -> dict:
    rules = {}
    for f in run.findings:
        rules.setdefault(sarif_rule_id(f), {
            "id": sarif_rule_id(f),
            "shortDescription": {"text": f.title},
            "properties": {"dimension": f.dimension.value},
        })
    return {
        "$schema": SARIF_SCHEMA,
        "version": SARIF_VERSION,
        "runs": [{
            "tool": {"driver": {"name": TOOL_NAME, "rules": list(rules.values())}},
            "results": sarif_results(run.findings),
            "properties": {
                "runId": run.run_id,
                "repository": run.repo.full_name,
                "pullRequest": run.pull.number,
                "totalScore": round(run.scores.total, 2) if run.scores else None,
            },
        }],
    }


def render_markdown(run: ReviewRun, scoring: ScoringConfig | None = None) -> str:
    lines = [f"# Review report: {run.repo.full_name} #{run.pull.number}", ""]
    if run.pull.title:
        lines += [f"_{run.pull.title}_", ""]
    if run.scores:
        summary = summarize_scores(run.scores, run.findings, scoring)
        lines += [f"**Total score:** {run.scores.total:.1f}/100 (grade {summary.grade})", ""]
        lines += ["| Dimension | Score | Weight |", "|---|---|---|"]
        for dim in Dimension:
            score = run.scores.dimensions[dim]
            lines.append(f"| {dimension_icon(score)} {dim.value} | {score:.1f} | {run.scores.weights[dim]:.2f} |")
        lines += ["", "## Recommendations", ""]
        lines += [f"- {r}" for r in summary.recommendations]

    lines += ["", f"## Findings ({len(run.findings)})", ""]
    if not run.findings:
        lines.append("No findings.")
    for f in run.findings:
        location = f"{f.file_path}:{f.start_line}" + (f"-{f.end_line}" if f.end_line != f.start_line else "")
        lines.append(f"### [{f.severity.value}] {f.title}")
        lines.append("")
        lines.append(f"`{location}` | {f.dimension.value} | confidence {f.confidence:.0%} | {', '.join(sorted(f.sources))}")
        if f.evidence:
            lines += ["", f.evidence]
        if f.suggestion:
            lines += ["", f"**Suggestion:** {f.suggestion}"]
        lines.append("")

    lines += ["", f"Run `{run.run_id}`", ""]
    return "\n".join(lines)


def render_html(run: ReviewRun, scoring: ScoringConfig | None = None) -> str:
    e = html.escape
    rows = []
    if run.scores:
        for dim in Dimension:
            rows.append(f"<tr><td>{dim.value}</td><td>{run.scores.dimensions[dim]:.1f}</td></tr>")
    items = []
    for f in run.findings:
        items.append(
            f'<li class="{f.severity.value.lower()}"><strong>[{f.severity.value}] {e(f.title)}</strong> '
            f"<code>{e(f.file_path)}:{f.start_line}</code> ({f.dimension.value}, {f.confidence:.0%})"
            + (f"<p>{e(f.evidence)}</p>" if f.evidence else "")
            + (f"<p><em>{e(f.suggestion)}</em></p>" if f.suggestion else "")
            + "</li>"
        )
    total = f"{run.scores.total:.1f}/100 (grade {summarize_scores(run.scores, run.findings, scoring).grade})" if run.scores else "n/a"
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
        f"<title>Review {e(run.repo.full_name)} #{run.pull.number}</title></head>\n<body>\n"
        f"<h1>Review report: {e(run.repo.full_name)} #{run.pull.number}</h1>\n"
        f"<p>Total score: {total}</p>\n"
        f"<table><tr><th>Dimension</th><th>Score</th></tr>{''.join(rows)}</table>\n"
        f"<h2>Findings ({len(run.findings)})</h2>\n<ul>{''.join(items)}</ul>\n"
        f"<footer>Run {e(run.run_id)}</footer>\n</body></html>\n"
    )


class DefaultReportRenderer(ReportRenderer):
    """Renders every configured format and writes files when output_dir is set."""

    def __init__(self, config: ReportConfig | None = None, scoring: ScoringConfig | None = None):
        self.config = config or ReportConfig()
        self.scoring = scoring

    def render(self, run: ReviewRun) -> Artifacts:
        artifacts = Artifacts()
        formats = self.config.formats
        if "json" in formats:
            artifacts.json = json.dumps(report_dict(run, self.scoring), indent=2)
        if "markdown" in formats:
            artifacts.markdown = render_markdown(run, self.scoring)
        if "html" in formats:
            artifacts.html = render_html(run, self.scoring)
        if "sarif" in formats:
            artifacts.sarif = json.dumps(sarif_document(run), indent=2)

        if self.config.output_dir is not None:
            artifacts.files = self._write(run, artifacts, self.config.output_dir)
        return artifacts

    def _write(self, run: ReviewRun, artifacts: Artifacts, output_dir: Path) -> list[Path]:
        run_dir = output_dir / run.run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for fmt, filename in REPORT_FILENAMES.items():
            content = getattr(artifacts, fmt)
            if content is None:
                continue
            path = run_dir / filename
            if fmt == "json":
                ensure_valid(json.loads(content), "report", path)
            path.write_text(content)
            written.append(path)
        logger.info(f"[{run.run_id}] Wrote {len(written)} report files to {run_dir}")
        return written
