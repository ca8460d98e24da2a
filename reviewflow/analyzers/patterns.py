"""Regex rule analyzer for added lines."""

import logging
import re
from dataclasses import dataclass

from reviewflow.lib.types import CodeSegment, Dimension, Finding, Severity
from reviewflow.pipeline.ports import AnalysisContext, SegmentAnalyzer

logger = logging.getLogger(__name__)

ANALYZER_ID = "patterns"

@dataclass(frozen=True)
class PatternRule:
    rule_id: str
    pattern: re.Pattern
    severity: Severity
    dimension: Dimension
    title: str
    confidence: float
    suggestion: str | None = None
    languages: frozenset[str] | None = None  # None = every language

def _rule(rule_id, regex, severity, dimension, title, confidence, suggestion=None, languages=None, flags=0):
    return PatternRule(
        rule_id=rule_id,
        pattern=re.compile(regex, flags),
        severity=severity,
        dimension=dimension,
        title=title,
        confidence=confidence,
        suggestion=suggestion,
        languages=frozenset(languages) if languages else None,
    )

DEFAULT_RULES = (
    _rule(
        "secret", r"""(api[_-]?key|secret|token|password|passwd|private[_-]?key)\s*[:=]\s*["'][^"'\s]{8,}["']""",
        Severity.CRITICAL, Dimension.SECURITY, "Hardcoded credential", 0.8,
        "Load credentials from the environment or a secret manager.", flags=re.IGNORECASE,
    ),
    _rule(
        "aws-key", r"AKIA[0-9A-Z]{16}",
        Severity.CRITICAL, Dimension.SECURITY, "AWS access key id in source", 0.95,
        "Revoke the key and load it from the environment.",
    ),
    _rule(
        "eval", r"(?<![\w.])(eval|exec)\s*\(",
        Severity.MAJOR, Dimension.SECURITY, "Dynamic code execution", 0.7,
        "Avoid eval/exec on data that may be user controlled.", languages=("python", "javascript", "typescript", "php", "ruby"),
    ),
    _rule(
        "shell", r"shell\s*=\s*True",
        Severity.MAJOR, Dimension.SECURITY, "Subprocess call with shell=True", 0.75,
        "Pass the command as a list and keep shell=False.", languages=("python",),
    ),
    _rule(
        "os-system", r"\bos\.(system|popen)\s*\(",
        Severity.MAJOR, Dimension.SECURITY, "Shell command via os.system/os.popen", 0.7,
        "Use subprocess.run with an argument list.", languages=("python",),
    ),
    _rule(
        "unsafe-deserialization", r"\b(pickle\.loads?|marshal\.loads?|yaml\.load)\s*\(",
        Severity.MAJOR, Dimension.SECURITY, "Unsafe deserialization", 0.7,
        "Use yaml.safe_load or a data-only format such as JSON.", languages=("python",),
    ),
    _rule(
        "sql-format", r"""(execute|query)\s*\(\s*(f["']|["'][^"']*["']\s*(%|\+|\.format))""",
        Severity.CRITICAL, Dimension.SECURITY, "SQL built from string formatting (injection risk)", 0.75,
        "Use parameterized queries.", flags=re.IGNORECASE,
    ),
    _rule(
        "bare-except", r"^\s*except\s*:",
        Severity.MINOR, Dimension.QUALITY, "Bare except swallows every exception", 0.8,
        "Catch the specific exceptions you expect.", languages=("python",),
    ),
    _rule(
        "debug-print", r"^\s*(print\s*\(|console\.log\s*\(|System\.out\.println\s*\()",
        Severity.INFO, Dimension.MAINTAINABILITY, "Debug output left in code", 0.5,
        "Use the project logger instead.", languages=("python", "javascript", "typescript", "java"),
    ),
    _rule(
        "todo", r"\b(TODO|FIXME|XXX|HACK)\b",
        Severity.INFO, Dimension.MAINTAINABILITY, "Unresolved TODO/FIXME marker", 0.6,
    ),
    _rule(
        "select-star", r"\bSELECT\s+\*\s+FROM\b",
        Severity.MINOR, Dimension.PERFORMANCE, "SELECT * fetches every column", 0.6,
        "Select only the columns you need.", flags=re.IGNORECASE,
    ),
    _rule(
        "skipped-test", r"(@pytest\.mark\.skip\b|@unittest\.skip\b|\b(it|describe|test)\.skip\s*\(|\bxit\s*\(|@Disabled\b|@Ignore\b)",
        Severity.MINOR, Dimension.TEST_COVERAGE, "Test disabled", 0.7,
        "Fix and re-enable the test or delete it.",
    ),
    _rule(
        "focused-test", r"\b(it|describe|test)\.only\s*\(|\bfit\s*\(|\bfdescribe\s*\(",
        Severity.MAJOR, Dimension.TEST_COVERAGE, "Focused test skips the rest of the suite", 0.85,
        languages=("javascript", "typescript"),
    ),
)

class PatternAnalyzer(SegmentAnalyzer):
    """Runs regex rules over the lines a pull request adds.

    Context lines are never flagged; pre-existing issues are not the
    author's change.
    """

    def __init__(self, rules: tuple[PatternRule, ...] = DEFAULT_RULES, enabled: bool = True):
        self.rules = rules
        self.enabled = enabled

    @property
    def analyzer_id(self) -> str:
        return ANALYZER_ID

    def is_enabled(self) -> bool:
        return self.enabled

    def supports_file(self, file_path: str) -> bool:
        return not file_path.endswith((".lock", ".min.js", ".svg", ".png", ".jpg"))

    def _rules_for(self, language: str) -> list[PatternRule]:
        return [r for r in self.rules if r.languages is None or language in r.languages]

    def analyze_segment(self, segment: CodeSegment, context: AnalysisContext) -> list[Finding]:
        rules = self._rules_for(segment.language)
        added = set(segment.added_lines)
        findings = []
        for line_no, text in segment.lines():
            if line_no not in added:
                continue
            for rule in rules:
                if not rule.pattern.search(text):
                    continue
                findings.append(Finding(
                    id=f"{ANALYZER_ID}.{rule.rule_id}@{segment.file_path}:{line_no}",
                    file_path=segment.file_path,
                    start_line=line_no,
                    end_line=line_no,
                    severity=rule.severity,
                    dimension=rule.dimension,
                    title=rule.title,
                    evidence=text.strip()[:200],
                    suggestion=rule.suggestion,
                    sources=frozenset({ANALYZER_ID}),
                    confidence=rule.confidence,
                ))
        if findings:
            logger.debug(f"[{context.run_id}] {segment.file_path}: {len(findings)} pattern hits")
        return findings
