"""
Scoring engine.

Turns aggregated findings into per-dimension scores and a weighted total.

    penalty   = severity_penalty[severity] * confidence * size_factor(lines_changed)
    dimension = clamp(100 - sum(penalties), 0, 100)
    total     = sum(dimension * weight)

Findings below the ignore threshold contribute nothing. Weights are never
normalized: a weight map that doesn't sum to 1.0 is a configuration error.
"""

import logging
import re
from dataclasses import dataclass, field, replace

from reviewflow.lib.config import (
    DimensionMappingConfig,
    ScoringConfig,
    SizeFactor,
    resolve_size_factor,
    validate_severity_penalty,
    validate_weights,
)
from reviewflow.lib.types import Dimension, Finding, Scores, Severity

logger = logging.getLogger(__name__)


def finding_penalty(finding: Finding, config: ScoringConfig, size_multiplier: float) -> float:
    return config.severity_penalty[finding.severity] * finding.confidence * size_multiplier


def calculate_scores(
    findings: list[Finding],
    lines_changed: int,
    config: ScoringConfig | None = None,
    size_factor: SizeFactor | None = None,
) -> Scores:
    """Compute dimension scores and the weighted total.

    Args:
        findings: Aggregated findings
        lines_changed: Lines added plus lines deleted in the pull request
        config: Scoring configuration (defaults when None)
        size_factor: Overrides config.size_factor

    Raises:
        ConfigError: If weights or penalties are invalid
    """
    config = config or ScoringConfig()
    validate_weights(config.weights)
    validate_severity_penalty(config.severity_penalty)
    multiplier = resolve_size_factor(size_factor or config.size_factor)(lines_changed)

    penalties = {d: 0.0 for d in Dimension}
    counted = 0
    for finding in findings:
        if finding.confidence < config.ignore_confidence_below:
            continue
        penalties[finding.dimension] += finding_penalty(finding, config, multiplier)
        counted += 1

    if not counted:
        return Scores.perfect(config.weights)

    dimensions = {d: min(100.0, max(0.0, 100.0 - penalties[d])) for d in Dimension}
    total = sum(dimensions[d] * config.weights[d] for d in Dimension)
    total = min(100.0, max(0.0, total))

    logger.debug(
        f"Scored {counted}/{len(findings)} findings over {lines_changed} changed lines "
        f"(size factor {multiplier:.3f}): total {total:.2f}"
    )
    return Scores(total=total, dimensions=dimensions, weights=dict(config.weights))


def _keyword_patterns(config: DimensionMappingConfig) -> list[tuple[Dimension, re.Pattern]]:
    patterns = []
    for dim in Dimension:
        words = config.keywords.get(dim) or ()
        if words:
            alternation = "|".join(re.escape(w) for w in words)
            patterns.append((dim, re.compile(rf"\b({alternation})", re.IGNORECASE)))
    return patterns


def classify(finding: Finding, config: DimensionMappingConfig) -> Dimension:
    """Dimension a finding belongs to under the mapping config."""
    for prefix in sorted(config.rules, key=len, reverse=True):
        if finding.id.startswith(prefix):
            return config.rules[prefix]
    if not config.force_remap:
        return finding.dimension

    text = f"{finding.title} {finding.evidence}"
    best, best_hits = None, 0
    for dim, pattern in _keyword_patterns(config):
        hits = len(pattern.findall(text))
        if hits > best_hits:
            best, best_hits = dim, hits
    return best or config.default_dimension


def map_findings_to_dimensions(findings: list[Finding], config: DimensionMappingConfig | None = None) -> list[Finding]:
    """Re-classify findings into scoring dimensions.

    Rule prefixes always win; keyword matching only applies with
    force_remap. Classification reads only fields it never writes, so
    mapping twice gives the same result as mapping once.
    """
    config = config or DimensionMappingConfig()
    if not config.rules and not config.force_remap:
        return list(findings)
    mapped = []
    for finding in findings:
        dim = classify(finding, config)
        mapped.append(finding if dim == finding.dimension else replace(finding, dimension=dim))
    return mapped


RECOMMENDATIONS = {
    Dimension.SECURITY: "Address security findings first: validate inputs, keep secrets out of code and avoid unsafe calls.",
    Dimension.QUALITY: "Fix the reported bugs and error-handling gaps; simplify overly complex code paths.",
    Dimension.MAINTAINABILITY: "Refactor for readability: clearer naming, smaller functions and documentation where intent is not obvious.",
    Dimension.PERFORMANCE: "Review hot paths for unnecessary work, repeated queries and avoidable allocations.",
    Dimension.TEST_COVERAGE: "Add or re-enable tests covering the changed behavior.",
}

NO_PROBLEMS_RECOMMENDATION = "Great work! Continue following best practices."


def grade_for(total: float) -> str:
    if total >= 90:
        return "A"
    if total >= 80:
        return "B"
    if total >= 70:
        return "C"
    if total >= 60:
        return "D"
    return "F"


@dataclass
class ScoreSummary:
    grade: str
    total: float
    problem_areas: list[Dimension] = field(default_factory=list)
    strong_areas: list[Dimension] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    critical_findings: int = 0

    @property
    def has_problems(self) -> bool:
        return bool(self.problem_areas)


def summarize_scores(scores: Scores, findings: list[Finding] | None = None, config: ScoringConfig | None = None) -> ScoreSummary:
    """Grade, problem/strong areas and recommendations for a score set."""
    config = config or ScoringConfig()
    problems = [d for d in Dimension if scores.dimensions[d] < config.problem_threshold]
    strong = [d for d in Dimension if scores.dimensions[d] >= config.excellent_threshold]
    recommendations = [RECOMMENDATIONS[d] for d in problems] or [NO_PROBLEMS_RECOMMENDATION]
    critical = sum(1 for f in findings or [] if f.severity is Severity.CRITICAL)
    return ScoreSummary(
        grade=grade_for(scores.total),
        total=scores.total,
        problem_areas=problems,
        strong_areas=strong,
        recommendations=recommendations,
        critical_findings=critical,
    )
