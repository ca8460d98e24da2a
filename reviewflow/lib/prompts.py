"""
Review prompt templates.

The packaged template is reviewflow/prompts/review.md; a reviewer configured
with `prompt_file` uses its own file instead. Templates are rendered with
str.format(), so literal braces (JSON examples) are doubled. HTML comments
(<!-- ... -->) are notes for template authors and are stripped on load.

A template may use any of REVIEW_FIELDS. Unknown placeholders are rejected
when the template is loaded, before any review runs.
"""

import logging
import re
import string
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
DEFAULT_PROMPT = PROMPTS_DIR / "review.md"

REVIEW_FIELDS = frozenset({"repository", "pull_number", "pull_title", "segments"})


class PromptError(Exception):
    """A prompt template can't be loaded or rendered."""


@dataclass(frozen=True)
class PromptTemplate:
    source: Path
    text: str
    fields: frozenset[str]

    def render(self, **values) -> str:
        missing = sorted(self.fields - values.keys())
        if missing:
            raise PromptError(f"Prompt {self.source.name} needs values for: {', '.join(missing)}")
        return self.text.format(**values)


def _placeholders(text: str) -> frozenset[str]:
    names = set()
    for _, field_name, _, _ in string.Formatter().parse(text):
        if field_name:
            names.add(re.split(r"[.\[]", field_name, maxsplit=1)[0])
    return frozenset(names)


@lru_cache(maxsize=32)
def load_prompt(path: Path = DEFAULT_PROMPT) -> PromptTemplate:
    """
    Load and check a review prompt template (cached per path).

    Raises:
        PromptError: If the file is unreadable, has unbalanced braces or uses
            a placeholder outside REVIEW_FIELDS
    """
    try:
        text = path.read_text()
    except OSError as e:
        raise PromptError(f"Cannot read prompt template {path}: {e}") from e

    text = _HTML_COMMENT_PATTERN.sub('', text).lstrip()
    try:
        fields = _placeholders(text)
    except ValueError as e:
        raise PromptError(f"Malformed prompt template {path}: {e}") from e

    unknown = sorted(fields - REVIEW_FIELDS)
    if unknown:
        raise PromptError(
            f"Prompt template {path} uses unknown variables {unknown}. "
            f"Available: {sorted(REVIEW_FIELDS)}"
        )
    logger.debug(f"Loaded prompt template {path} ({len(fields)} variables)")
    return PromptTemplate(source=path, text=text, fields=fields)
