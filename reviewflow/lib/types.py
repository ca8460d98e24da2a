"""
Shared data types for reviewflow.

Value types passed between the pipeline stages live here to avoid circular
imports. Everything except ReviewRun is immutable.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class Severity(Enum):
    INFO = "INFO"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: "str | Severity") -> "Severity":
        """Accept enum members or case-insensitive names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown severity: {value!r}") from None


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.MINOR: 1,
    Severity.MAJOR: 2,
    Severity.CRITICAL: 3,
}


class Dimension(Enum):
    SECURITY = "SECURITY"
    QUALITY = "QUALITY"
    MAINTAINABILITY = "MAINTAINABILITY"
    PERFORMANCE = "PERFORMANCE"
    TEST_COVERAGE = "TEST_COVERAGE"

    @classmethod
    def parse(cls, value: "str | Dimension") -> "Dimension":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown dimension: {value!r}") from None


# Fixed scoring key set
ALL_DIMENSIONS = frozenset(Dimension)


class ChangeKind(Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    RENAMED = "RENAMED"


@dataclass(frozen=True)
class RepoRef:
    """Repository being reviewed."""
    provider: str  # "github", "local"
    owner: str
    name: str
    url: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class PullRef:
    """Pull/merge request being reviewed."""
    number: int
    title: str | None = None
    source_branch: str | None = None
    target_branch: str | None = None
    head_sha: str | None = None
    draft: bool = False


@dataclass(frozen=True)
class DiffHunk:
    """One changed file of a pull request, as reported by the SCM."""
    file_path: str
    change: ChangeKind
    patch: str
    lines_added: int = 0
    lines_deleted: int = 0
    old_path: str | None = None  # Set for renames


@dataclass(frozen=True)
class CodeSegment:
    """A contiguous slice of new-file content submitted for analysis."""
    file_path: str
    content: str
    start_line: int  # 1-based, new-file numbering
    line_count: int
    language: str = "text"
    kind: str = "hunk"  # "hunk", "lines", "block", "file"
    added_lines: tuple[int, ...] = ()  # New-file line numbers added by the diff

    @property
    def end_line(self) -> int:
        return self.start_line + max(self.line_count, 1) - 1

    def lines(self) -> list[tuple[int, str]]:
        """Content lines paired with their new-file line numbers."""
        return [(self.start_line + i, text) for i, text in enumerate(self.content.split("\n"))]


@dataclass(frozen=True)
class Finding:
    """An issue reported against a line range of the new file."""
    id: str
    file_path: str
    start_line: int
    end_line: int
    severity: Severity
    dimension: Dimension
    title: str
    sources: frozenset[str]
    confidence: float
    evidence: str = ""
    suggestion: str | None = None
    patch: str | None = None

    def __post_init__(self):
        if not isinstance(self.severity, Severity):
            raise ValueError(f"Finding {self.id}: severity must be a Severity, got {self.severity!r}")
        if not isinstance(self.dimension, Dimension):
            raise ValueError(f"Finding {self.id}: dimension must be a Dimension, got {self.dimension!r}")
        if not isinstance(self.sources, frozenset):
            object.__setattr__(self, "sources", frozenset(self.sources))
        if not self.sources:
            raise ValueError(f"Finding {self.id}: at least one source is required")
        if not self.file_path:
            raise ValueError(f"Finding {self.id}: file_path is required")
        if math.isnan(self.confidence) or not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Finding {self.id}: confidence {self.confidence} outside [0, 1]")
        if self.start_line < 1 or self.end_line < self.start_line:
            raise ValueError(
                f"Finding {self.id}: invalid line range {self.start_line}-{self.end_line}"
            )

    @property
    def line_span(self) -> int:
        return self.end_line - self.start_line + 1


@dataclass(frozen=True)
class Scores:
    """Dimension scores and the weighted total, all in [0, 100]."""
    total: float
    dimensions: dict[Dimension, float]
    weights: dict[Dimension, float]

    def __post_init__(self):
        for label, mapping in (("dimensions", self.dimensions), ("weights", self.weights)):
            if set(mapping) != ALL_DIMENSIONS:
                missing = sorted(d.value for d in ALL_DIMENSIONS - set(mapping))
                extra = sorted(str(k) for k in set(mapping) - ALL_DIMENSIONS)
                raise ValueError(f"Scores.{label} must cover every dimension (missing={missing}, extra={extra})")

    @classmethod
    def perfect(cls, weights: dict[Dimension, float]) -> "Scores":
        return cls(total=100.0, dimensions={d: 100.0 for d in Dimension}, weights=dict(weights))

    def to_dict(self) -> dict:
        return {
            "total": round(self.total, 2),
            "dimensions": {d.value: round(self.dimensions[d], 2) for d in Dimension},
            "weights": {d.value: self.weights[d] for d in Dimension},
        }


@dataclass(frozen=True)
class CheckSummary:
    """Check/status payload for the SCM."""
    title: str
    conclusion: str  # "success", "failure", "neutral"
    summary: str
    details_url: str | None = None


@dataclass(frozen=True)
class InlineComment:
    """Review comment anchored to a line of the new file."""
    file_path: str
    line: int
    body: str
    start_line: int | None = None
    side: str = "RIGHT"


@dataclass
class PluginOutcome:
    """How one analyzer/reviewer call ended."""
    plugin_id: str
    kind: str  # "static", "ai"
    status: str  # "ok", "failed", "timeout"
    elapsed_seconds: float
    findings: int = 0
    error: str | None = None


@dataclass
class RunStats:
    files_changed: int = 0
    lines_added: int = 0
    lines_deleted: int = 0
    latency_ms: int = 0
    segments: int = 0
    token_cost_usd: float | None = None
    plugins: list[PluginOutcome] = field(default_factory=list)

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_deleted


@dataclass
class Artifacts:
    json: str | None = None
    markdown: str | None = None
    html: str | None = None
    sarif: str | None = None
    files: list[Path] = field(default_factory=list)


@dataclass
class ReviewRun:
    """A single review execution.

    Created and filled in by the orchestrator as the run progresses; not
    shared between runs.
    """
    run_id: str
    repo: RepoRef
    pull: PullRef
    started_at: datetime
    finished_at: datetime | None = None
    state: str = "created"
    state_history: list[tuple[str, str, str]] = field(default_factory=list)  # (from, to, trigger)
    providers_used: list[str] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    scores: Scores | None = None
    stats: RunStats = field(default_factory=RunStats)
    artifacts: Artifacts | None = None
    error: str | None = None
