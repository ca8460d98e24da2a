"""
Plugin contracts for analyzers and reviewers.

Static analyzers and AI reviewers are black boxes behind these interfaces.
The orchestrator hands each plugin only the segments it supports and
enforces the configured timeout itself.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from reviewflow.lib.config import PluginSettings
from reviewflow.lib.costing import UsageLedger
from reviewflow.lib.types import CodeSegment, Finding, PullRef, RepoRef


@dataclass(frozen=True)
class AnalysisContext:
    """Read-only context passed to every plugin call of a run."""
    run_id: str
    repo: RepoRef
    pull: PullRef
    settings: PluginSettings = field(default_factory=PluginSettings)
    usage: UsageLedger = field(default_factory=UsageLedger)

    @property
    def timeout_seconds(self) -> float:
        return self.settings.timeout_seconds


class StaticAnalyzer(ABC):
    """Deterministic analyzer (linters, pattern rules, scanners)."""

    @property
    @abstractmethod
    def analyzer_id(self) -> str: ...

    def is_enabled(self) -> bool:
        return True

    def supports_file(self, file_path: str) -> bool:
        return True

    @abstractmethod
    async def analyze_batch(self, segments: list[CodeSegment], context: AnalysisContext) -> list[Finding]: ...


class AiReviewer(ABC):
    """Model-backed reviewer."""

    @property
    @abstractmethod
    def reviewer_id(self) -> str: ...

    def is_enabled(self) -> bool:
        return True

    def supports_language(self, language: str) -> bool:
        return True

    @abstractmethod
    async def review_batch(self, segments: list[CodeSegment], context: AnalysisContext) -> list[Finding]: ...


class SegmentAnalyzer(StaticAnalyzer):
    """StaticAnalyzer whose work is synchronous and per segment.

    analyze_segment runs in a worker thread so CPU-bound rules don't stall
    the other plugins on the event loop.
    """

    @abstractmethod
    def analyze_segment(self, segment: CodeSegment, context: AnalysisContext) -> list[Finding]: ...

    def _analyze_all(self, segments: list[CodeSegment], context: AnalysisContext) -> list[Finding]:
        findings: list[Finding] = []
        for segment in segments:
            findings.extend(self.analyze_segment(segment, context))
        return findings

    async def analyze_batch(self, segments: list[CodeSegment], context: AnalysisContext) -> list[Finding]:
        return await asyncio.to_thread(self._analyze_all, segments, context)
