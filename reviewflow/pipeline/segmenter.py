"""
Diff segmentation.

Splits the changed files of a pull request into CodeSegments that analyzers
and reviewers consume. Segments carry new-file content with new-file line
numbers; removed lines never appear in a segment.

Every added line of a reviewed file lands in exactly one segment, and
segments of the same file never overlap.
"""

import fnmatch
import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from unidiff import PatchSet
from unidiff.constants import RE_HUNK_HEADER
from unidiff.errors import UnidiffParseError

from reviewflow.lib.config import SplittingStrategy
from reviewflow.lib.types import ChangeKind, CodeSegment, DiffHunk

logger = logging.getLogger(__name__)


LANGUAGE_BY_EXTENSION = {
    "py": "python", "pyw": "python",
    "java": "java",
    "js": "javascript", "jsx": "javascript", "mjs": "javascript", "cjs": "javascript",
    "ts": "typescript", "tsx": "typescript",
    "cpp": "cpp", "cc": "cpp", "cxx": "cpp", "hpp": "cpp", "h": "cpp",
    "c": "c",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "kt": "kotlin", "kts": "kotlin",
    "scala": "scala", "sc": "scala",
    "rb": "ruby",
    "php": "php",
    "swift": "swift",
    "dart": "dart",
    "sql": "sql",
    "sh": "shell", "bash": "shell",
    "yml": "yaml", "yaml": "yaml",
}

# Lines that start a new function/class, used as preferred cut points
_BOUNDARIES = {
    "python": re.compile(r"^\s*(@\w|(async\s+)?def\s+\w+|class\s+\w+)"),
    "javascript": re.compile(r"^\s*(export\s+)?(default\s+)?(async\s+)?(function\b|class\s+\w+|(const|let)\s+\w+\s*=\s*(async\s*)?\()"),
    "go": re.compile(r"^func\s"),
    "rust": re.compile(r"^\s*(pub(\(\w+\))?\s+)?(async\s+)?(fn|impl|struct|enum|trait|mod)\s"),
    "ruby": re.compile(r"^\s*(def|class|module)\s"),
    "php": re.compile(r"^\s*((public|private|protected|static|abstract|final)\s+)*(function|class|interface|trait)\s"),
}
_BOUNDARIES["typescript"] = _BOUNDARIES["javascript"]
_C_LIKE = re.compile(
    r"^\s*((public|private|protected|internal|static|final|abstract|override|open|sealed|data)\s+)*"
    r"(class|interface|enum|record|struct|fun|def|func|object)\s+\w+"
    r"|^\s*((public|private|protected|static|final)\s+)+[\w<>\[\],\s]+\s+\w+\s*\("
)
for _lang in ("java", "csharp", "kotlin", "scala", "swift", "dart", "cpp", "c"):
    _BOUNDARIES[_lang] = _C_LIKE


def detect_language(file_path: str) -> str:
    """Infer language from file extension. Returns "text" when unknown."""
    suffix = PurePosixPath(file_path).suffix.lower().lstrip(".")
    return LANGUAGE_BY_EXTENSION.get(suffix, "text")


@dataclass(frozen=True)
class _Line:
    number: int  # New-file line number
    text: str
    added: bool


def _patch_set(patch: str, file_path: str) -> PatchSet:
    # Per-file patches (GitHub's "patch" field) carry no file headers
    if not patch.startswith(("--- ", "diff ")):
        patch = f"--- a/{file_path}\n+++ b/{file_path}\n{patch}"
    return PatchSet(patch)


def parse_patch(patch: str, change: ChangeKind = ChangeKind.MODIFIED, file_path: str = "file") -> list[list[_Line]]:
    """Parse a unified diff patch for one file into hunks of new-file lines.

    Removed lines and "\\ No newline" markers are dropped; text past the
    line counts of a hunk header is ignored. An ADDED file whose patch has
    no hunk header is numbered from line 1.

    Raises:
        UnidiffParseError: If the patch is malformed
    """
    raw_lines = patch.split("\n")
    if raw_lines and raw_lines[-1] == "":
        raw_lines.pop()

    if not any(RE_HUNK_HEADER.match(line) for line in raw_lines):
        if change != ChangeKind.ADDED or not raw_lines:
            return []
        plus = all(line.startswith("+") for line in raw_lines)
        return [[
            _Line(i, line[1:] if plus else line, True)
            for i, line in enumerate(raw_lines, 1)
        ]]

    hunks: list[list[_Line]] = []
    for patched_file in _patch_set(patch, file_path):
        for hunk in patched_file:
            hunks.append([
                _Line(line.target_line_no, line.value.rstrip("\r\n"), line.is_added)
                for line in hunk
                if line.is_added or line.is_context
            ])
    return hunks


def _contiguous_runs(lines: list[_Line]) -> list[list[_Line]]:
    runs: list[list[_Line]] = []
    for line in lines:
        if runs and runs[-1][-1].number + 1 == line.number:
            runs[-1].append(line)
        else:
            runs.append([line])
    return runs


def _cut_point(run: list[_Line], max_lines: int, boundary: re.Pattern | None) -> int:
    """Index to cut an oversized run at, in (max_lines // 2, max_lines]."""
    low = max(1, max_lines // 2)
    if boundary is not None:
        for i in range(max_lines, low - 1, -1):
            if i < len(run) and boundary.match(run[i].text):
                return i
    for i in range(max_lines, low - 1, -1):
        if i < len(run) and not run[i].text.strip():
            return i
    return max_lines


def _split_run(run: list[_Line], max_lines: int, boundary: re.Pattern | None) -> list[list[_Line]]:
    pieces = []
    while len(run) > max_lines:
        cut = _cut_point(run, max_lines, boundary)
        pieces.append(run[:cut])
        run = run[cut:]
    if run:
        pieces.append(run)
    return pieces


def _windows(run: list[_Line], size: int) -> list[list[_Line]]:
    return [run[i:i + size] for i in range(0, len(run), size)]


def _segment(file_path: str, language: str, kind: str, lines: list[_Line]) -> CodeSegment:
    return CodeSegment(
        file_path=file_path,
        content="\n".join(line.text for line in lines),
        start_line=lines[0].number,
        line_count=len(lines),
        language=language,
        kind=kind,
        added_lines=tuple(line.number for line in lines if line.added),
    )


def is_excluded(file_path: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch.fnmatch(file_path, pattern) for pattern in patterns)


def split_hunk(hunk: DiffHunk, strategy: SplittingStrategy) -> list[CodeSegment]:
    """Segments for one changed file."""
    if hunk.change == ChangeKind.DELETED or not hunk.patch:
        return []

    language = detect_language(hunk.file_path)
    boundary = _BOUNDARIES.get(language)

    try:
        parsed_hunks = parse_patch(hunk.patch, hunk.change, hunk.file_path)
    except UnidiffParseError as e:
        logger.warning(f"Skipping {hunk.file_path}: malformed patch ({e})")
        return []

    # Drop lines an earlier hunk already claimed so segments never overlap
    seen: set[int] = set()
    diff_hunks: list[list[_Line]] = []
    for parsed in parsed_hunks:
        fresh = [line for line in parsed if line.number not in seen]
        seen.update(line.number for line in fresh)
        if fresh:
            diff_hunks.append(fresh)

    pieces: list[tuple[str, list[_Line]]] = []
    if strategy.kind in ("hunk", "lines"):
        for parsed in diff_hunks:
            for run in _contiguous_runs(parsed):
                if strategy.kind == "hunk":
                    pieces.append(("hunk", run))
                else:
                    pieces.extend(("lines", w) for w in _windows(run, strategy.max_lines))
    else:
        merged = sorted((line for parsed in diff_hunks for line in parsed), key=lambda l: l.number)
        for run in _contiguous_runs(merged):
            if strategy.kind == "file":
                pieces.append(("file", run))
            else:
                pieces.extend(("block", p) for p in _split_run(run, strategy.max_lines, boundary))

    return [
        _segment(hunk.file_path, language, kind, lines)
        for kind, lines in pieces
        if any(line.added for line in lines)
    ]


def split(hunks: list[DiffHunk], strategy: SplittingStrategy | None = None) -> list[CodeSegment]:
    """Split changed files into analyzable segments.

    Deleted files, empty/binary patches and files matching strategy.exclude
    produce nothing. Output order follows input file order, then line order.
    """
    strategy = strategy or SplittingStrategy()
    segments: list[CodeSegment] = []
    for hunk in hunks:
        if is_excluded(hunk.file_path, strategy.exclude):
            logger.debug(f"Skipping excluded file {hunk.file_path}")
            continue
        segments.extend(split_hunk(hunk, strategy))
    logger.debug(f"Split {len(hunks)} files into {len(segments)} segments ({strategy.kind})")
    return segments
