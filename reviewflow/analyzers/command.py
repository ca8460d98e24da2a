"""
AI reviewer backed by an agent CLI.

Runs a command such as `claude -p --output-format json`, passing the review
prompt via stdin to avoid CLI argument length limits, and turns the JSON the
agent returns into Findings.
"""

import asyncio
import json
import logging
import shlex
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from reviewflow.lib.costing import TokenUsage
from reviewflow.lib.prompts import DEFAULT_PROMPT, load_prompt
from reviewflow.lib.types import CodeSegment, Dimension, Finding, Severity
from reviewflow.pipeline.ports import AiReviewer, AnalysisContext

logger = logging.getLogger(__name__)


REVIEWER_ID = "command"
DEFAULT_COMMAND = "claude -p --output-format json"
DEFAULT_BATCH_SIZE = 20


class ReviewerError(Exception):
    """The agent failed or returned output that can't be used."""


class ReviewIssue(BaseModel):
    file: str
    start_line: int = Field(ge=1)
    end_line: int | None = None
    severity: Severity
    dimension: Dimension = Dimension.QUALITY
    title: str
    evidence: str = ""
    suggestion: str | None = None
    patch: str | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("severity", "dimension", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class ReviewPayload(BaseModel):
    findings: list[ReviewIssue] = Field(default_factory=list)


def extract_json(text: str) -> str:
    """Pull the JSON document out of an agent response.

    Agents sometimes add prose around a ```json fenced block.
    """
    inner = text.strip()
    if "```" in inner:
        start = inner.find("```json")
        if start == -1:
            start = inner.find("```")
        newline = inner.find("\n", start)
        if newline != -1:
            close = inner.find("\n```", newline)
            if close != -1:
                inner = inner[newline + 1:close].strip()
    return inner


def parse_agent_output(stdout: str) -> tuple[ReviewPayload, dict]:
    """Parse agent stdout into a payload plus the CLI wrapper metadata.

    `--output-format json` wraps the response as {"type": "result", "result": "..."};
    bare JSON output is accepted as well.

    Raises:
        ReviewerError: If no valid payload can be extracted
    """
    try:
        wrapper = json.loads(stdout.strip())
    except json.JSONDecodeError:
        wrapper = None

    meta: dict = {}
    if isinstance(wrapper, dict) and isinstance(wrapper.get("result"), str):
        meta = wrapper
        raw = extract_json(wrapper["result"])
    elif isinstance(wrapper, dict) and "findings" in wrapper:
        return _validate_payload(wrapper), meta
    else:
        raw = extract_json(stdout)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ReviewerError(f"Invalid JSON from agent: {e}") from None
    return _validate_payload(data), meta


def _validate_payload(data) -> ReviewPayload:
    try:
        return ReviewPayload.model_validate(data)
    except ValidationError as e:
        raise ReviewerError(f"Agent output failed validation: {e.error_count()} errors: {e.errors()[0]['msg']}") from None


def format_segments(segments: list[CodeSegment]) -> str:
    blocks = []
    for seg in segments:
        added = set(seg.added_lines)
        numbered = "\n".join(
            f"{n:>5} {'+' if n in added else ' '} {text}" for n, text in seg.lines()
        )
        blocks.append(
            f"### {seg.file_path} ({seg.language}) lines {seg.start_line}-{seg.end_line}\n\n```\n{numbered}\n```"
        )
    return "\n\n".join(blocks)


class CommandReviewer(AiReviewer):
    """Runs an agent CLI over batches of segments.

    Options (from the reviewer's PluginSettings.options):
        command: CLI command line (default: claude -p --output-format json)
        model: model name used for cost estimation
        batch_size: segments per agent call
        languages: restrict to these languages
        prompt_file: custom prompt template (default: the packaged review.md)

    Raises:
        PromptError: If the prompt template is unusable
    """

    def __init__(
        self,
        command: str = DEFAULT_COMMAND,
        reviewer_id: str = REVIEWER_ID,
        enabled: bool = True,
        model: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        languages: list[str] | None = None,
        cwd: Path | None = None,
        prompt_file: Path = DEFAULT_PROMPT,
    ):
        self.command = command
        self._reviewer_id = reviewer_id
        self.enabled = enabled
        self.model = model
        self.batch_size = max(1, batch_size)
        self.languages = {lang.lower() for lang in languages} if languages else None
        self.cwd = cwd
        self.prompt = load_prompt(Path(prompt_file))

    @property
    def reviewer_id(self) -> str:
        return self._reviewer_id

    def is_enabled(self) -> bool:
        return self.enabled

    def supports_language(self, language: str) -> bool:
        if self.languages is None:
            return language != "text"
        return language.lower() in self.languages

    async def _run_agent(self, prompt: str) -> str:
        cmd = shlex.split(self.command)
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self.cwd) if self.cwd else None,
        )
        try:
            stdout, stderr = await proc.communicate(prompt.encode())
        except asyncio.CancelledError:
            # Orchestrator timeout; don't leave the agent running
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            raise ReviewerError(
                f"'{cmd[0]}' exited {proc.returncode}: {stderr.decode(errors='replace').strip()[:500]}"
            )
        return stdout.decode(errors="replace")

    def _to_findings(self, payload: ReviewPayload, segments: list[CodeSegment]) -> list[Finding]:
        files = {s.file_path for s in segments}
        findings = []
        for i, issue in enumerate(payload.findings):
            if issue.file not in files:
                logger.warning(f"[{self.reviewer_id}] Dropping finding for file outside the batch: {issue.file}")
                continue
            end_line = max(issue.end_line or issue.start_line, issue.start_line)
            findings.append(Finding(
                id=f"{self.reviewer_id}.{issue.dimension.value.lower()}@{issue.file}:{issue.start_line}#{i}",
                file_path=issue.file,
                start_line=issue.start_line,
                end_line=end_line,
                severity=issue.severity,
                dimension=issue.dimension,
                title=issue.title,
                evidence=issue.evidence,
                suggestion=issue.suggestion,
                patch=issue.patch,
                sources=frozenset({self.reviewer_id}),
                confidence=issue.confidence,
            ))
        return findings

    def _record_usage(self, meta: dict, context: AnalysisContext) -> None:
        if not meta:
            return
        usage = meta.get("usage") or {}
        context.usage.record(TokenUsage(
            reviewer_id=self.reviewer_id,
            model=self.model or meta.get("model"),
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            reported_cost_usd=meta.get("total_cost_usd"),
        ))

    async def review_batch(self, segments: list[CodeSegment], context: AnalysisContext) -> list[Finding]:
        findings: list[Finding] = []
        for start in range(0, len(segments), self.batch_size):
            batch = segments[start:start + self.batch_size]
            prompt = self.prompt.render(
                repository=context.repo.full_name,
                pull_number=context.pull.number,
                pull_title=context.pull.title or "(untitled)",
                segments=format_segments(batch),
            )
            stdout = await self._run_agent(prompt)
            payload, meta = parse_agent_output(stdout)
            self._record_usage(meta, context)
            findings.extend(self._to_findings(payload, batch))
        logger.debug(f"[{context.run_id}] {self.reviewer_id}: {len(findings)} findings from {len(segments)} segments")
        return findings
