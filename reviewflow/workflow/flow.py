"""Prefect flow wrapper for a review run.

Wraps ReviewOrchestrator.run with a Prefect @flow for observability when
connected to a Prefect server. The orchestrator and its plugins are built
by the caller.
"""

import logging
from pathlib import Path

from prefect import flow, get_run_logger
from prefect.exceptions import MissingContextError

from reviewflow.lib.stats import record_from_run, record_run_stats
from reviewflow.lib.types import PullRef, RepoRef, ReviewRun
from reviewflow.workflow.orchestrator import ReviewOrchestrator

logger = logging.getLogger(__name__)


def _flow_logger():
    try:
        return get_run_logger()
    except MissingContextError:
        # Called via .fn outside a flow run
        return logger


@flow(name="review_pull_request", validate_parameters=False)
async def review_pull_request(
    orchestrator: ReviewOrchestrator,
    repo: RepoRef,
    pull: PullRef,
    stats_file: Path | None = None,
) -> ReviewRun:
    """Review one pull request and wait for its feedback to be published.

    Appends a run record to stats_file when given.
    """
    flow_logger = _flow_logger()
    flow_logger.info(f"Reviewing {repo.full_name}#{pull.number}")

    run = await orchestrator.run(repo, pull)
    await orchestrator.drain()

    if stats_file is not None:
        record_run_stats(stats_file, record_from_run(run))

    total = f"{run.scores.total:.1f}" if run.scores else "n/a"
    flow_logger.info(f"Run {run.run_id} finished: score {total}, {len(run.findings)} findings")
    return run
