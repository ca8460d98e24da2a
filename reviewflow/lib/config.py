"""
Review configuration.

Loads .ai-review.yml from the repository (or an explicit path) into frozen
config objects. A missing file yields defaults; a file that fails schema or
semantic validation raises ConfigError before any run starts.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from reviewflow.lib.types import ALL_DIMENSIONS, Dimension, Severity
from reviewflow.lib.validate import schema_problems

logger = logging.getLogger(__name__)


CONFIG_FILENAME = ".ai-review.yml"

WEIGHT_TOLERANCE = 0.001

DEFAULT_WEIGHTS = {
    Dimension.SECURITY: 0.30,
    Dimension.QUALITY: 0.25,
    Dimension.MAINTAINABILITY: 0.20,
    Dimension.PERFORMANCE: 0.15,
    Dimension.TEST_COVERAGE: 0.10,
}

DEFAULT_SEVERITY_PENALTY = {
    Severity.INFO: 1.0,
    Severity.MINOR: 3.0,
    Severity.MAJOR: 7.0,
    Severity.CRITICAL: 12.0,
}

DEFAULT_IGNORE_CONFIDENCE_BELOW = 0.3

DEFAULT_KEYWORDS = {
    Dimension.SECURITY: (
        "security", "vulnerability", "injection", "xss", "csrf",
        "auth", "crypto", "ssl", "password", "token", "secret",
    ),
    Dimension.QUALITY: (
        "quality", "bug", "error", "exception", "null",
        "duplicate", "complexity", "smell", "antipattern",
    ),
    Dimension.MAINTAINABILITY: (
        "maintainability", "refactor", "documentation", "comment",
        "naming", "structure", "coupling", "cohesion",
    ),
    Dimension.PERFORMANCE: (
        "performance", "slow", "memory", "cpu", "optimization",
        "efficiency", "cache", "database", "query", "loop",
    ),
    Dimension.TEST_COVERAGE: (
        "test", "coverage", "unittest", "integration", "assertion", "mock", "stub",
    ),
}


class ConfigError(Exception):
    """Configuration is invalid. Always fatal."""


# Size factors: lines changed -> penalty multiplier. Each is monotonically
# non-decreasing and at least 1.0, so a counted finding always costs its
# nominal penalty or more.
SizeFactor = Callable[[int], float]

SIZE_FACTORS: dict[str, SizeFactor] = {
    "log": lambda n: 1.0 + math.log1p(max(n, 0)) / 6.0,
    "sqrt": lambda n: 1.0 + math.sqrt(max(n, 0)) / 10.0,
    "linear": lambda n: 1.0 + max(n, 0) / 100.0,
    "flat": lambda n: 1.0,
}


def resolve_size_factor(factor: str | SizeFactor) -> SizeFactor:
    """Return the size factor callable for a name or pass a callable through."""
    if callable(factor):
        return factor
    try:
        return SIZE_FACTORS[factor]
    except KeyError:
        raise ConfigError(
            f"Unknown size_factor '{factor}'. Known: {', '.join(sorted(SIZE_FACTORS))}"
        ) from None


def validate_weights(weights: dict[Dimension, float]) -> None:
    """Raise ConfigError unless weights cover every dimension and sum to 1.0."""
    keys = set(weights)
    if keys != ALL_DIMENSIONS:
        missing = sorted(d.value for d in ALL_DIMENSIONS - keys)
        extra = sorted(str(k) for k in keys - ALL_DIMENSIONS)
        raise ConfigError(f"Weights must cover every dimension (missing={missing}, extra={extra})")
    for dim, weight in weights.items():
        if weight < 0:
            raise ConfigError(f"Weight for {dim.value} is negative: {weight}")
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigError(f"Weights must sum to 1.0 (+/- {WEIGHT_TOLERANCE}), got {total:.4f}")


def validate_severity_penalty(penalties: dict[Severity, float]) -> None:
    """Raise ConfigError unless every severity has a strictly increasing penalty."""
    missing = [s.value for s in Severity if s not in penalties]
    if missing:
        raise ConfigError(f"Severity penalties missing for: {missing}")
    ordered = sorted(Severity, key=lambda s: s.rank)
    for lower, higher in zip(ordered, ordered[1:]):
        if not penalties[lower] < penalties[higher]:
            raise ConfigError(
                f"Severity penalties must increase with severity: "
                f"{lower.value}={penalties[lower]} >= {higher.value}={penalties[higher]}"
            )
    if penalties[ordered[0]] < 0:
        raise ConfigError("Severity penalties must be non-negative")


@dataclass(frozen=True)
class ScoringConfig:
    weights: dict[Dimension, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    severity_penalty: dict[Severity, float] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_PENALTY))
    ignore_confidence_below: float = DEFAULT_IGNORE_CONFIDENCE_BELOW
    size_factor: str = "log"
    problem_threshold: float = 70.0
    excellent_threshold: float = 90.0

    def __post_init__(self):
        validate_weights(self.weights)
        validate_severity_penalty(self.severity_penalty)
        if not 0.0 <= self.ignore_confidence_below <= 1.0:
            raise ConfigError(
                f"ignore_confidence_below must be within [0, 1], got {self.ignore_confidence_below}"
            )
        resolve_size_factor(self.size_factor)
        if not 0.0 <= self.problem_threshold <= self.excellent_threshold <= 100.0:
            raise ConfigError("Thresholds must satisfy 0 <= problem_threshold <= excellent_threshold <= 100")


@dataclass(frozen=True)
class AggregationConfig:
    line_tolerance: int = 0  # Extra lines allowed between ranges that still count as overlapping
    min_severity: Severity | None = None
    max_findings: int | None = None

    def __post_init__(self):
        if self.line_tolerance < 0:
            raise ConfigError(f"line_tolerance must be >= 0, got {self.line_tolerance}")
        if self.max_findings is not None and self.max_findings < 0:
            raise ConfigError(f"max_findings must be >= 0, got {self.max_findings}")


@dataclass(frozen=True)
class DimensionMappingConfig:
    """Re-classification of findings into scoring dimensions.

    rules map a finding id prefix (e.g. "patterns.secret") to a dimension and
    always win. Keyword matching only applies when force_remap is set.
    """
    rules: dict[str, Dimension] = field(default_factory=dict)
    keywords: dict[Dimension, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_KEYWORDS))
    force_remap: bool = False
    default_dimension: Dimension = Dimension.QUALITY


SPLIT_KINDS = ("hunk", "lines", "intelligent", "file")


@dataclass(frozen=True)
class SplittingStrategy:
    kind: str = "intelligent"
    max_lines: int = 300
    exclude: tuple[str, ...] = ()  # fnmatch globs on file path

    def __post_init__(self):
        if self.kind not in SPLIT_KINDS:
            raise ConfigError(f"Unknown splitting strategy '{self.kind}'. Known: {', '.join(SPLIT_KINDS)}")
        if self.max_lines < 1:
            raise ConfigError(f"max_lines must be >= 1, got {self.max_lines}")


@dataclass(frozen=True)
class FeedbackConfig:
    enabled: bool = True
    check: bool = True
    inline_comments: bool = True
    summary_comment: bool = True
    min_confidence: float = 0.7
    max_inline_comments: int = 20
    details_url: str | None = None  # May contain {run_id}

    def __post_init__(self):
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigError(f"min_confidence must be within [0, 1], got {self.min_confidence}")
        if self.max_inline_comments < 0:
            raise ConfigError(f"max_inline_comments must be >= 0, got {self.max_inline_comments}")


REPORT_FORMATS = ("json", "markdown", "html", "sarif")


@dataclass(frozen=True)
class ReportConfig:
    formats: tuple[str, ...] = REPORT_FORMATS
    output_dir: Path | None = None

    def __post_init__(self):
        unknown = [f for f in self.formats if f not in REPORT_FORMATS]
        if unknown:
            raise ConfigError(f"Unknown report formats: {unknown}")


@dataclass(frozen=True)
class PluginSettings:
    """Per analyzer/reviewer settings. Unknown keys land in options."""
    enabled: bool = True
    timeout_seconds: float = 30.0
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")


DEFAULT_ANALYZER_TIMEOUT = 30.0
DEFAULT_REVIEWER_TIMEOUT = 60.0


@dataclass(frozen=True)
class ReviewConfig:
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    dimension_mapping: DimensionMappingConfig = field(default_factory=DimensionMappingConfig)
    splitting: SplittingStrategy = field(default_factory=SplittingStrategy)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    reports: ReportConfig = field(default_factory=ReportConfig)
    analyzers: dict[str, PluginSettings] = field(default_factory=dict)
    reviewers: dict[str, PluginSettings] = field(default_factory=dict)
    max_concurrency: int = 4

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be >= 1, got {self.max_concurrency}")

    def analyzer_settings(self, analyzer_id: str) -> PluginSettings:
        return self.analyzers.get(analyzer_id) or PluginSettings(timeout_seconds=DEFAULT_ANALYZER_TIMEOUT)

    def reviewer_settings(self, reviewer_id: str) -> PluginSettings:
        return self.reviewers.get(reviewer_id) or PluginSettings(timeout_seconds=DEFAULT_REVIEWER_TIMEOUT)


def _dimension_map(data: dict, what: str) -> dict[Dimension, Any]:
    try:
        return {Dimension.parse(k): v for k, v in data.items()}
    except ValueError as e:
        raise ConfigError(f"{what}: {e}") from None


def _severity_map(data: dict, what: str) -> dict[Severity, Any]:
    try:
        return {Severity.parse(k): v for k, v in data.items()}
    except ValueError as e:
        raise ConfigError(f"{what}: {e}") from None


def _plugin_settings(data: dict | None, default_timeout: float) -> dict[str, PluginSettings]:
    result = {}
    for plugin_id, raw in (data or {}).items():
        raw = dict(raw or {})
        enabled = raw.pop("enabled", True)
        timeout = raw.pop("timeout_seconds", default_timeout)
        result[plugin_id] = PluginSettings(enabled=enabled, timeout_seconds=float(timeout), options=raw)
    return result


def config_from_dict(data: dict | None) -> ReviewConfig:
    """Build a ReviewConfig from parsed YAML, applying defaults for anything absent.

    Raises:
        ConfigError: If the data fails schema or semantic validation
    """
    data = data or {}
    problems = schema_problems(data, "review_config")
    if problems:
        raise ConfigError(f"Invalid review_config: {'; '.join(problems)}")

    scoring_raw = data.get("scoring") or {}
    weights = dict(DEFAULT_WEIGHTS)
    if "weights" in scoring_raw:
        # Weights are replaced as a whole, never merged, so a partial map fails validation
        weights = {k: float(v) for k, v in _dimension_map(scoring_raw["weights"], "scoring.weights").items()}
    penalties = dict(DEFAULT_SEVERITY_PENALTY)
    penalties.update(
        {k: float(v) for k, v in _severity_map(scoring_raw.get("severity_penalty") or {}, "scoring.severity_penalty").items()}
    )
    scoring = ScoringConfig(
        weights=weights,
        severity_penalty=penalties,
        ignore_confidence_below=float(scoring_raw.get("ignore_confidence_below", DEFAULT_IGNORE_CONFIDENCE_BELOW)),
        size_factor=scoring_raw.get("size_factor", "log"),
        problem_threshold=float(scoring_raw.get("problem_threshold", 70.0)),
        excellent_threshold=float(scoring_raw.get("excellent_threshold", 90.0)),
    )

    agg_raw = data.get("aggregation") or {}
    min_severity = agg_raw.get("min_severity")
    try:
        min_severity = Severity.parse(min_severity) if min_severity else None
    except ValueError as e:
        raise ConfigError(f"aggregation.min_severity: {e}") from None
    aggregation = AggregationConfig(
        line_tolerance=agg_raw.get("line_tolerance", 0),
        min_severity=min_severity,
        max_findings=agg_raw.get("max_findings"),
    )

    map_raw = data.get("dimension_mapping") or {}
    keywords = dict(DEFAULT_KEYWORDS)
    keywords.update(
        {k: tuple(v) for k, v in _dimension_map(map_raw.get("keywords") or {}, "dimension_mapping.keywords").items()}
    )
    try:
        rules = {prefix: Dimension.parse(dim) for prefix, dim in (map_raw.get("rules") or {}).items()}
        default_dimension = Dimension.parse(map_raw.get("default_dimension", "QUALITY"))
    except ValueError as e:
        raise ConfigError(f"dimension_mapping: {e}") from None
    mapping = DimensionMappingConfig(
        rules=rules,
        keywords=keywords,
        force_remap=map_raw.get("force_remap", False),
        default_dimension=default_dimension,
    )

    split_raw = data.get("splitting") or {}
    splitting = SplittingStrategy(
        kind=split_raw.get("strategy", "intelligent"),
        max_lines=split_raw.get("max_lines", 300),
        exclude=tuple(split_raw.get("exclude") or ()),
    )

    fb_raw = data.get("feedback") or {}
    feedback = FeedbackConfig(
        enabled=fb_raw.get("enabled", True),
        check=fb_raw.get("check", True),
        inline_comments=fb_raw.get("inline_comments", True),
        summary_comment=fb_raw.get("summary_comment", True),
        min_confidence=float(fb_raw.get("min_confidence", 0.7)),
        max_inline_comments=fb_raw.get("max_inline_comments", 20),
        details_url=fb_raw.get("details_url"),
    )

    rep_raw = data.get("reports") or {}
    output_dir = rep_raw.get("output_dir")
    reports = ReportConfig(
        formats=tuple(rep_raw.get("formats") or REPORT_FORMATS),
        output_dir=Path(output_dir) if output_dir else None,
    )

    return ReviewConfig(
        scoring=scoring,
        aggregation=aggregation,
        dimension_mapping=mapping,
        splitting=splitting,
        feedback=feedback,
        reports=reports,
        analyzers=_plugin_settings(data.get("analyzers"), DEFAULT_ANALYZER_TIMEOUT),
        reviewers=_plugin_settings(data.get("reviewers"), DEFAULT_REVIEWER_TIMEOUT),
        max_concurrency=data.get("max_concurrency", 4),
    )


def load_review_config(path: Path | None) -> ReviewConfig:
    """Load .ai-review.yml and return ReviewConfig.

    If path is None or the file doesn't exist, returns defaults. Unlike
    agents.yaml style configs, a broken file is never silently ignored.

    Raises:
        ConfigError: If the file can't be parsed or is invalid
    """
    if path is None or not path.exists():
        logger.debug(f"No review config at {path}, using defaults")
        return ReviewConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from None
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    try:
        config = config_from_dict(data)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from None
    logger.info(f"Loaded review config from {path}")
    return config


def default_config_yaml() -> str:
    """YAML text for `rf config init`."""
    data = {
        "scoring": {
            "weights": {d.value: w for d, w in DEFAULT_WEIGHTS.items()},
            "severity_penalty": {s.value: p for s, p in DEFAULT_SEVERITY_PENALTY.items()},
            "ignore_confidence_below": DEFAULT_IGNORE_CONFIDENCE_BELOW,
            "size_factor": "log",
        },
        "splitting": {"strategy": "intelligent", "max_lines": 300, "exclude": []},
        "feedback": {
            "enabled": True,
            "inline_comments": True,
            "summary_comment": True,
            "min_confidence": 0.7,
            "max_inline_comments": 20,
        },
        "reports": {"formats": list(REPORT_FORMATS)},
        "analyzers": {"patterns": {"enabled": True, "timeout_seconds": DEFAULT_ANALYZER_TIMEOUT}},
        "reviewers": {"command": {"enabled": False, "timeout_seconds": DEFAULT_REVIEWER_TIMEOUT}},
        "max_concurrency": 4,
    }
    return yaml.safe_dump(data, sort_keys=False)
