"""Review orchestrator.

Drives one ReviewRun through the pipeline:
fetch diff -> segment -> analyze (concurrent) -> aggregate -> score ->
report -> publish feedback.

Failure policy:
- Anything that fails before scores exist fails the run with an
  OrchestrationError chained to the original exception.
- A failing or timed-out analyzer/reviewer contributes no findings; the run
  continues. Each plugin call gets its own event loop in a worker thread, so
  a plugin that blocks can't hold up the others or its own timeout.
- Report and feedback failures after scoring are logged; the run is still
  returned. Feedback is published by a detached task, see drain().
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from reviewflow.adapters.base import AdapterRouter, ScmAdapter
from reviewflow.lib.config import PluginSettings, ReviewConfig
from reviewflow.lib.costing import UsageLedger
from reviewflow.lib.types import (
    CodeSegment,
    DiffHunk,
    Finding,
    PluginOutcome,
    PullRef,
    RepoRef,
    ReviewRun,
    Scores,
)
from reviewflow.pipeline.aggregator import aggregate, canonical_key
from reviewflow.pipeline.feedback import publish_feedback
from reviewflow.pipeline.ports import AiReviewer, AnalysisContext, StaticAnalyzer
from reviewflow.pipeline.reports import DefaultReportRenderer, ReportRenderer
from reviewflow.pipeline.scoring import calculate_scores, map_findings_to_dimensions
from reviewflow.pipeline.segmenter import split
from reviewflow.workflow.fsm import ReviewRunFSM

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationError(Exception):
    """A review run failed."""
    run_id: str
    stage: str
    message: str

    def __str__(self):
        return f"[{self.run_id}:{self.stage}] {self.message}"


def new_run_id() -> str:
    """Unique, sortable run id: run-YYYYmmdd-HHMMSS-<hex>."""
    return f"run-{datetime.now(timezone.utc):%Y%m%d-%H%M%S}-{secrets.token_hex(3)}"


def validate_refs(repo: RepoRef | None, pull: PullRef | None) -> None:
    """Raise ValueError if repo/pull can't identify a pull request."""
    if repo is None:
        raise ValueError("repo is required")
    if pull is None:
        raise ValueError("pull is required")
    if not repo.provider or not repo.provider.strip():
        raise ValueError("repo.provider is required")
    for label, value in (("owner", repo.owner), ("name", repo.name)):
        if not value or not value.strip() or "/" in value or any(c.isspace() for c in value):
            raise ValueError(f"repo.{label} is invalid: {value!r}")
    if not isinstance(pull.number, int) or isinstance(pull.number, bool) or pull.number < 1:
        raise ValueError(f"pull.number must be a positive integer, got {pull.number!r}")


class PluginCall:
    """One plugin coroutine, run on its own event loop in a worker thread.

    A plugin that blocks (sync I/O, CPU-bound parsing) only blocks its own
    loop, so the caller's timeout fires on schedule. On timeout the plugin
    task is cancelled; a plugin stuck outside an await finishes in the
    background and its result is discarded.
    """

    def __init__(self, call: Callable[[], Awaitable[list[Finding]]]):
        self._call = call
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None

    async def _main(self) -> list[Finding]:
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        return await self._call()

    def _run_in_thread(self) -> list[Finding]:
        return asyncio.run(self._main())

    async def run(self, timeout: float) -> list[Finding]:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._run_in_thread), timeout=timeout)
        except asyncio.TimeoutError:
            self.cancel()
            raise

    def cancel(self) -> None:
        loop, task = self._loop, self._task
        if loop is None or task is None:
            return
        try:
            loop.call_soon_threadsafe(task.cancel)
        except RuntimeError:
            logger.debug("Plugin loop already closed")


class ReviewOrchestrator:
    """Runs reviews with a fixed set of plugins.

    Plugins, adapters and the renderer are passed in explicitly; the
    orchestrator never discovers them. One instance may run many reviews
    concurrently: all per-run state lives inside run().
    """

    def __init__(
        self,
        adapters: AdapterRouter,
        static_analyzers: list[StaticAnalyzer] | None = None,
        ai_reviewers: list[AiReviewer] | None = None,
        config: ReviewConfig | None = None,
        renderer: ReportRenderer | None = None,
    ):
        self.adapters = adapters
        self.static_analyzers = list(static_analyzers or [])
        self.ai_reviewers = list(ai_reviewers or [])
        self.config = config or ReviewConfig()
        self.renderer = renderer or DefaultReportRenderer(self.config.reports, self.config.scoring)
        self._feedback_tasks: set[asyncio.Task] = set()

    async def run(self, repo: RepoRef, pull: PullRef) -> ReviewRun:
        """Review one pull request.

        Returns:
            The finished ReviewRun (state "done")

        Raises:
            OrchestrationError: If the run failed before scores existed
        """
        run_id = new_run_id()
        try:
            validate_refs(repo, pull)
        except ValueError as e:
            raise OrchestrationError(run_id, "validate", str(e)) from e

        run = ReviewRun(run_id=run_id, repo=repo, pull=pull, started_at=datetime.now(timezone.utc))
        fsm = ReviewRunFSM(run)
        started = time.monotonic()
        logger.info(f"[{run_id}] Reviewing {repo.provider}:{repo.full_name}#{pull.number}")

        stage = "fetch_diff"
        try:
            adapter = self.adapters.resolve(repo.provider)
            run.providers_used.append(adapter.provider)
            hunks = await asyncio.to_thread(adapter.list_diff, repo, pull)
            self._record_diff_stats(run, hunks)
            fsm.fetch_diff()

            if not hunks:
                logger.info(f"[{run_id}] Empty diff, nothing to review")
                run.scores = Scores.perfect(self.config.scoring.weights)
                self._finish(run, started)
                fsm.finish_empty()
                return run

            stage = "segment"
            segments = split(hunks, self.config.splitting)
            run.stats.segments = len(segments)
            fsm.segment()

            stage = "analyze"
            fsm.start_analysis()
            usage = UsageLedger()
            static_findings, ai_findings = await self._analyze(run, segments, usage)
            run.stats.token_cost_usd = usage.total_cost_usd

            stage = "aggregate"
            result = aggregate(static_findings, ai_findings, self.config.aggregation)
            mapped = map_findings_to_dimensions(result.findings, self.config.dimension_mapping)
            run.findings = sorted(mapped, key=canonical_key)
            fsm.aggregate()

            stage = "score"
            run.scores = calculate_scores(run.findings, run.stats.lines_changed, self.config.scoring)
            fsm.score()
        except Exception as e:
            run.error = str(e)
            run.finished_at = datetime.now(timezone.utc)
            if not fsm.is_terminal:
                fsm.fail()
            logger.error(f"[{run_id}] Run failed during {stage}: {e}")
            raise OrchestrationError(run_id, stage, str(e)) from e

        self._finish(run, started)
        logger.info(
            f"[{run_id}] Scored {run.scores.total:.1f}/100 with {len(run.findings)} findings "
            f"({result.stats.duplicates_merged} merged)"
        )

        try:
            run.artifacts = self.renderer.render(run)
        except Exception as e:
            logger.warning(f"[{run_id}] Report rendering failed: {e}")
            run.artifacts = None
        fsm.report()

        if self.config.feedback.enabled:
            self._spawn_feedback(adapter, run)
        else:
            logger.debug(f"[{run_id}] Feedback disabled")
        fsm.publish_feedback()
        fsm.finish()
        return run

    def _record_diff_stats(self, run: ReviewRun, hunks: list[DiffHunk]) -> None:
        run.stats.files_changed = len(hunks)
        run.stats.lines_added = sum(h.lines_added for h in hunks)
        run.stats.lines_deleted = sum(h.lines_deleted for h in hunks)

    def _finish(self, run: ReviewRun, started: float) -> None:
        run.finished_at = datetime.now(timezone.utc)
        run.stats.latency_ms = int((time.monotonic() - started) * 1000)

    def _select(
        self,
        run: ReviewRun,
        kind: str,
        plugin_id: str,
        enabled: Callable[[], bool],
        supports: Callable[[CodeSegment], bool],
        segments: list[CodeSegment],
    ) -> list[CodeSegment]:
        """Segments a plugin should see; a plugin that errors here is skipped."""
        try:
            if not enabled():
                return []
            return [s for s in segments if supports(s)]
        except Exception as e:
            logger.warning(f"[{run.run_id}] {kind} plugin {plugin_id} failed during selection: {e}")
            run.stats.plugins.append(PluginOutcome(
                plugin_id=plugin_id, kind=kind, status="failed", elapsed_seconds=0.0, error=str(e),
            ))
            return []

    async def _analyze(
        self,
        run: ReviewRun,
        segments: list[CodeSegment],
        usage: UsageLedger,
    ) -> tuple[list[Finding], list[Finding]]:
        """Fan out to every enabled plugin and wait for all of them."""
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        static_calls = []
        ai_calls = []

        for analyzer in self.static_analyzers:
            settings = self.config.analyzer_settings(analyzer.analyzer_id)
            if not settings.enabled:
                continue
            supported = self._select(
                run, "static", analyzer.analyzer_id, analyzer.is_enabled,
                lambda s, a=analyzer: a.supports_file(s.file_path), segments,
            )
            if supported:
                ctx = AnalysisContext(run_id=run.run_id, repo=run.repo, pull=run.pull, settings=settings, usage=usage)
                static_calls.append(self._guarded(
                    run, "static", analyzer.analyzer_id, settings, semaphore,
                    lambda a=analyzer, segs=supported, c=ctx: a.analyze_batch(segs, c),
                ))

        for reviewer in self.ai_reviewers:
            settings = self.config.reviewer_settings(reviewer.reviewer_id)
            if not settings.enabled:
                continue
            supported = self._select(
                run, "ai", reviewer.reviewer_id, reviewer.is_enabled,
                lambda s, r=reviewer: r.supports_language(s.language), segments,
            )
            if supported:
                ctx = AnalysisContext(run_id=run.run_id, repo=run.repo, pull=run.pull, settings=settings, usage=usage)
                ai_calls.append(self._guarded(
                    run, "ai", reviewer.reviewer_id, settings, semaphore,
                    lambda r=reviewer, segs=supported, c=ctx: r.review_batch(segs, c),
                ))

        logger.info(f"[{run.run_id}] Running {len(static_calls)} analyzers and {len(ai_calls)} reviewers")
        results = await asyncio.gather(*static_calls, *ai_calls)
        static_findings = [f for batch in results[:len(static_calls)] for f in batch]
        ai_findings = [f for batch in results[len(static_calls):] for f in batch]
        return static_findings, ai_findings

    async def _guarded(
        self,
        run: ReviewRun,
        kind: str,
        plugin_id: str,
        settings: PluginSettings,
        semaphore: asyncio.Semaphore,
        call: Callable[[], Awaitable[list[Finding]]],
    ) -> list[Finding]:
        """Run one plugin call; any failure or timeout yields no findings."""
        async with semaphore:
            started = time.monotonic()
            outcome = PluginOutcome(plugin_id=plugin_id, kind=kind, status="ok", elapsed_seconds=0.0)
            findings: list[Finding] = []
            try:
                raw = await PluginCall(call).run(settings.timeout_seconds)
                findings = [f for f in raw or [] if isinstance(f, Finding)]
                if len(findings) != len(raw or []):
                    logger.warning(f"[{run.run_id}] {plugin_id} returned {len(raw) - len(findings)} non-Finding items")
                run.providers_used.append(plugin_id)
            except asyncio.TimeoutError:
                outcome.status = "timeout"
                outcome.error = f"timed out after {settings.timeout_seconds}s"
                logger.warning(f"[{run.run_id}] {kind} plugin {plugin_id} timed out after {settings.timeout_seconds}s")
            except Exception as e:
                outcome.status = "failed"
                outcome.error = str(e)
                logger.warning(f"[{run.run_id}] {kind} plugin {plugin_id} failed: {e}")
            outcome.elapsed_seconds = time.monotonic() - started
            outcome.findings = len(findings)
            run.stats.plugins.append(outcome)
            return findings

    def _spawn_feedback(self, adapter: ScmAdapter, run: ReviewRun) -> None:
        task = asyncio.create_task(self._publish(adapter, run), name=f"feedback-{run.run_id}")
        self._feedback_tasks.add(task)
        task.add_done_callback(self._feedback_tasks.discard)

    async def _publish(self, adapter: ScmAdapter, run: ReviewRun) -> None:
        try:
            result = await asyncio.to_thread(publish_feedback, adapter, run, self.config.feedback, self.config.scoring)
        except Exception as e:
            logger.warning(f"[{run.run_id}] Feedback publishing failed: {e}")
            return
        if result.ok:
            logger.info(f"[{run.run_id}] Feedback published: {', '.join(result.published) or 'nothing'}")
        else:
            logger.warning(f"[{run.run_id}] Feedback partially failed: {sorted(result.failed)}")

    @property
    def pending_feedback(self) -> int:
        return len(self._feedback_tasks)

    async def drain(self) -> None:
        """Wait for every detached feedback task to finish."""
        while self._feedback_tasks:
            await asyncio.gather(*list(self._feedback_tasks))
