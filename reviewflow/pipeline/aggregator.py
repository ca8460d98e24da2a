"""
Finding aggregation.

Merges static and AI findings that describe the same problem: same file,
same dimension, overlapping line ranges. Grouping is transitive and runs on
canonically sorted input, so the result never depends on which plugin
finished first.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field

from reviewflow.lib.config import AggregationConfig
from reviewflow.lib.types import Finding

logger = logging.getLogger(__name__)


@dataclass
class AggregationStats:
    input_count: int = 0
    duplicates_merged: int = 0
    filtered_out: int = 0
    final_count: int = 0
    by_dimension: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0


@dataclass
class AggregationResult:
    findings: list[Finding]
    dropped: list[Finding]
    stats: AggregationStats


def canonical_key(f: Finding) -> tuple:
    """Total order over findings; equal keys mean identical findings."""
    return (
        f.file_path,
        f.dimension.value,
        f.start_line,
        f.end_line,
        -f.severity.rank,
        -f.confidence,
        f.id,
        f.title,
        f.evidence,
        f.suggestion or "",
        f.patch or "",
        tuple(sorted(f.sources)),
    )


def _primary_key(f: Finding) -> tuple:
    return (-f.confidence, -f.severity.rank, canonical_key(f))


def group_findings(findings: list[Finding], line_tolerance: int = 0) -> list[list[Finding]]:
    """Group findings into connected components of overlapping ranges.

    Two findings overlap when they share file and dimension and their line
    ranges intersect after widening by line_tolerance.
    """
    groups: list[list[Finding]] = []
    current: list[Finding] = []
    current_end = 0
    current_scope = None
    for f in sorted(findings, key=canonical_key):
        scope = (f.file_path, f.dimension)
        if current and scope == current_scope and f.start_line <= current_end + line_tolerance:
            current.append(f)
            current_end = max(current_end, f.end_line)
            continue
        if current:
            groups.append(current)
        current = [f]
        current_end = f.end_line
        current_scope = scope
    if current:
        groups.append(current)
    return groups


def merge_group(group: list[Finding]) -> Finding:
    """Collapse a group into one finding.

    Severity and confidence take the maximum, text fields come from the most
    confident member, sources are unioned and the range spans all members.
    """
    if len(group) == 1:
        return group[0]
    primary = min(group, key=_primary_key)
    return Finding(
        id=primary.id,
        file_path=primary.file_path,
        start_line=min(f.start_line for f in group),
        end_line=max(f.end_line for f in group),
        severity=max((f.severity for f in group), key=lambda s: s.rank),
        dimension=primary.dimension,
        title=primary.title,
        sources=frozenset().union(*(f.sources for f in group)),
        confidence=max(f.confidence for f in group),
        evidence=primary.evidence,
        suggestion=primary.suggestion,
        patch=primary.patch,
    )


def aggregate(
    static_findings: list[Finding],
    ai_findings: list[Finding],
    config: AggregationConfig | None = None,
) -> AggregationResult:
    """Merge static and AI findings into a deduplicated, canonically ordered list."""
    config = config or AggregationConfig()
    candidates = list(static_findings) + list(ai_findings)

    merged: list[Finding] = []
    dropped: list[Finding] = []
    for group in group_findings(candidates, config.line_tolerance):
        result = merge_group(group)
        merged.append(result)
        if len(group) > 1:
            primary = min(group, key=_primary_key)
            dropped.extend(f for f in group if f is not primary)

    duplicates = len(candidates) - len(merged)

    kept = merged
    if config.min_severity is not None:
        floor = config.min_severity.rank
        dropped.extend(f for f in kept if f.severity.rank < floor)
        kept = [f for f in kept if f.severity.rank >= floor]
    if config.max_findings is not None and len(kept) > config.max_findings:
        ranked = sorted(kept, key=lambda f: (-f.severity.rank, -f.confidence, canonical_key(f)))
        dropped.extend(ranked[config.max_findings:])
        kept = ranked[:config.max_findings]

    kept = sorted(kept, key=canonical_key)

    stats = AggregationStats(
        input_count=len(candidates),
        duplicates_merged=duplicates,
        filtered_out=len(merged) - len(kept),
        final_count=len(kept),
        by_dimension=dict(Counter(f.dimension.value for f in kept)),
        by_severity=dict(Counter(f.severity.value for f in kept)),
        average_confidence=round(sum(f.confidence for f in kept) / len(kept), 4) if kept else 0.0,
    )
    logger.debug(
        f"Aggregated {stats.input_count} findings -> {stats.final_count} "
        f"({stats.duplicates_merged} merged, {stats.filtered_out} filtered)"
    )
    return AggregationResult(findings=kept, dropped=dropped, stats=stats)
