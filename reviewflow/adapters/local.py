"""
Local adapter: reviews a unified diff file and writes feedback to disk.

Lets the pipeline run without any SCM account, e.g. on `git diff` output in
CI or before pushing.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from reviewflow.adapters.base import AdapterError, ScmAdapter
from reviewflow.lib.types import ChangeKind, CheckSummary, DiffHunk, InlineComment, PullRef, RepoRef

logger = logging.getLogger(__name__)


PROVIDER_LOCAL = "local"


def _strip_prefix(path: str) -> str:
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def parse_unified_diff(diff_text: str) -> list[DiffHunk]:
    """Parse a multi-file unified diff into one DiffHunk per file."""
    hunks = []
    for patched_file in PatchSet(diff_text):
        if patched_file.is_added_file:
            change = ChangeKind.ADDED
        elif patched_file.is_removed_file:
            change = ChangeKind.DELETED
        elif patched_file.is_rename:
            change = ChangeKind.RENAMED
        else:
            change = ChangeKind.MODIFIED

        patch = "" if patched_file.is_binary_file else "".join(str(h) for h in patched_file)
        old_path = _strip_prefix(patched_file.source_file) if change == ChangeKind.RENAMED else None
        hunks.append(DiffHunk(
            file_path=patched_file.path,
            change=change,
            patch=patch,
            lines_added=patched_file.added,
            lines_deleted=patched_file.removed,
            old_path=old_path,
        ))
    return hunks


class LocalDiffAdapter(ScmAdapter):
    """Reads the diff from a file; feedback goes to output_dir.

    Feedback files:
        check.json                 latest CheckSummary
        comments.json              inline comments of the latest run
        summary-<key>.md           summary comment, replaced on each run
    """

    def __init__(self, diff_path: Path, output_dir: Path):
        self.diff_path = diff_path
        self.output_dir = output_dir

    @property
    def provider(self) -> str:
        return PROVIDER_LOCAL

    def list_diff(self, repo: RepoRef, pull: PullRef) -> list[DiffHunk]:
        try:
            diff_text = self.diff_path.read_text()
        except OSError as e:
            raise AdapterError(self.provider, f"Cannot read diff {self.diff_path}: {e}", "list_diff") from e
        try:
            return parse_unified_diff(diff_text)
        except UnidiffParseError as e:
            raise AdapterError(self.provider, f"Malformed diff {self.diff_path}: {e}", "list_diff") from e

    def _write(self, filename: str, content: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        path.write_text(content)
        return path

    def upsert_check(self, repo: RepoRef, pull: PullRef, summary: CheckSummary) -> None:
        path = self._write("check.json", json.dumps(asdict(summary), indent=2))
        logger.info(f"Check '{summary.title}' ({summary.conclusion}) written to {path}")

    def post_inline_comments(self, repo: RepoRef, pull: PullRef, comments: list[InlineComment]) -> None:
        path = self._write("comments.json", json.dumps([asdict(c) for c in comments], indent=2))
        logger.info(f"{len(comments)} inline comments written to {path}")

    def create_or_update_summary_comment(self, repo: RepoRef, pull: PullRef, key: str, body: str) -> None:
        path = self._write(f"summary-{key}.md", body)
        logger.info(f"Summary comment written to {path}")
