"""
SCM adapter contract.

Adapters are blocking; the orchestrator calls them through
asyncio.to_thread so a slow SCM API never stalls the analyzers.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from reviewflow.lib.types import CheckSummary, DiffHunk, InlineComment, PullRef, RepoRef

logger = logging.getLogger(__name__)


@dataclass
class AdapterError(Exception):
    """An SCM operation failed."""
    provider: str
    message: str
    operation: str | None = None

    def __str__(self):
        op = f" {self.operation}" if self.operation else ""
        return f"[{self.provider}{op}] {self.message}"


class ScmAdapter(ABC):
    """Source control platform operations used by a review run."""

    @property
    @abstractmethod
    def provider(self) -> str: ...

    @abstractmethod
    def list_diff(self, repo: RepoRef, pull: PullRef) -> list[DiffHunk]: ...

    @abstractmethod
    def upsert_check(self, repo: RepoRef, pull: PullRef, summary: CheckSummary) -> None: ...

    @abstractmethod
    def post_inline_comments(self, repo: RepoRef, pull: PullRef, comments: list[InlineComment]) -> None: ...

    @abstractmethod
    def create_or_update_summary_comment(self, repo: RepoRef, pull: PullRef, key: str, body: str) -> None: ...


class AdapterRouter:
    """Resolves the adapter for a repository's provider (case-insensitive)."""

    def __init__(self, adapters: list[ScmAdapter]):
        self._adapters: dict[str, ScmAdapter] = {}
        for adapter in adapters:
            key = adapter.provider.lower()
            if key in self._adapters:
                logger.warning(f"Duplicate adapter for provider '{key}', keeping the last one")
            self._adapters[key] = adapter

    @property
    def providers(self) -> list[str]:
        return sorted(self._adapters)

    def resolve(self, provider: str) -> ScmAdapter:
        adapter = self._adapters.get((provider or "").lower())
        if adapter is None:
            raise AdapterError(
                provider or "unknown",
                f"No adapter for provider '{provider}'. Available: {', '.join(self.providers) or 'none'}",
                "resolve",
            )
        return adapter
