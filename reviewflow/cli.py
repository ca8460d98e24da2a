#!/usr/bin/env python3
"""reviewflow CLI entrypoint.

This is the composition root: it loads configuration, builds the adapters
and plugins, and hands them to the orchestrator.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from reviewflow.adapters.base import AdapterRouter
from reviewflow.adapters.github import GithubAdapter, check_gh_available
from reviewflow.adapters.local import LocalDiffAdapter
from reviewflow.analyzers.command import DEFAULT_BATCH_SIZE, DEFAULT_COMMAND, CommandReviewer
from reviewflow.analyzers.patterns import PatternAnalyzer
from reviewflow.lib.config import CONFIG_FILENAME, ConfigError, ReviewConfig, default_config_yaml, load_review_config
from reviewflow.lib.prompts import DEFAULT_PROMPT, PromptError
from reviewflow.lib.stats import format_duration
from reviewflow.lib.types import Dimension, PullRef, RepoRef
from reviewflow.pipeline.ports import AiReviewer, StaticAnalyzer
from reviewflow.pipeline.scoring import summarize_scores
from reviewflow.workflow.flow import review_pull_request
from reviewflow.workflow.orchestrator import OrchestrationError, ReviewOrchestrator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_plugins(config: ReviewConfig, cwd: Path | None = None) -> tuple[list[StaticAnalyzer], list[AiReviewer]]:
    """Built-in analyzers plus any configured reviewers."""
    analyzers: list[StaticAnalyzer] = [PatternAnalyzer()]
    reviewers: list[AiReviewer] = []

    settings = config.reviewers.get("command")
    if settings is not None and settings.enabled:
        opts = settings.options
        reviewers.append(CommandReviewer(
            command=opts.get("command", DEFAULT_COMMAND),
            model=opts.get("model"),
            batch_size=opts.get("batch_size", DEFAULT_BATCH_SIZE),
            languages=opts.get("languages"),
            cwd=cwd,
            prompt_file=Path(cwd or Path.cwd(), opts["prompt_file"]) if opts.get("prompt_file") else DEFAULT_PROMPT,
        ))
    return analyzers, reviewers


def parse_repo(value: str, provider: str) -> RepoRef:
    owner, sep, name = value.partition("/")
    if not sep or not owner or not name:
        raise argparse.ArgumentTypeError(f"--repo must look like owner/name, got '{value}'")
    return RepoRef(provider=provider, owner=owner, name=name)


def print_run(run) -> None:
    summary = summarize_scores(run.scores, run.findings)
    print(f"Run:      {run.run_id}")
    print(f"Score:    {run.scores.total:.1f}/100 (grade {summary.grade})")
    print(f"Duration: {format_duration(run.stats.latency_ms)}")
    for dim in Dimension:
        print(f"  {dim.value:<16} {run.scores.dimensions[dim]:6.1f}")
    print(f"Findings: {len(run.findings)}")
    for f in run.findings[:10]:
        print(f"  [{f.severity.value}] {f.file_path}:{f.start_line} {f.title}")
    if len(run.findings) > 10:
        print(f"  ... {len(run.findings) - 10} more")
    if run.artifacts and run.artifacts.files:
        print("Reports:")
        for path in run.artifacts.files:
            print(f"  {path}")


def cmd_review(args) -> int:
    config_path = Path(args.config) if args.config else Path.cwd() / CONFIG_FILENAME
    try:
        config = load_review_config(config_path)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG

    out_dir = Path(args.out)
    config = replace(config, reports=replace(config.reports, output_dir=out_dir / "reports"))
    if args.no_feedback:
        config = replace(config, feedback=replace(config.feedback, enabled=False))

    if args.provider == "local":
        if not args.diff:
            print("ERROR: --diff is required with --provider local", file=sys.stderr)
            return EXIT_CONFIG
        adapters = AdapterRouter([LocalDiffAdapter(Path(args.diff), out_dir / "feedback")])
    else:
        ok, error = check_gh_available()
        if not ok:
            print(f"ERROR: {error}", file=sys.stderr)
            return EXIT_CONFIG
        adapters = AdapterRouter([GithubAdapter()])

    try:
        repo = parse_repo(args.repo, args.provider)
    except argparse.ArgumentTypeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG
    pull = PullRef(number=args.pr, title=args.title, head_sha=args.sha)

    try:
        analyzers, reviewers = build_plugins(config, cwd=Path.cwd())
    except PromptError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG
    orchestrator = ReviewOrchestrator(adapters, analyzers, reviewers, config)

    stats_file = Path(args.stats) if args.stats else None
    try:
        run = asyncio.run(review_pull_request(orchestrator, repo, pull, stats_file))
    except OrchestrationError as e:
        print(f"ERROR: Review failed: {e}", file=sys.stderr)
        if e.__cause__ is not None:
            print(f"  Cause: {e.__cause__}", file=sys.stderr)
        return EXIT_FAILED

    print_run(run)
    if args.fail_under is not None and run.scores.total < args.fail_under:
        print(f"Score {run.scores.total:.1f} is below --fail-under {args.fail_under}", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def cmd_config_init(args) -> int:
    path = Path(args.path)
    if path.exists() and not args.force:
        print(f"ERROR: {path} already exists (use --force to overwrite)", file=sys.stderr)
        return EXIT_CONFIG
    path.write_text(default_config_yaml())
    print(f"Wrote {path}")
    return EXIT_OK


def cmd_config_validate(args) -> int:
    path = Path(args.path)
    if not path.exists():
        print(f"ERROR: {path} not found", file=sys.stderr)
        return EXIT_CONFIG
    try:
        load_review_config(path)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG
    print(f"{path}: OK")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog='rf', description='Scored AI code review for pull requests')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # rf review
    p_review = subparsers.add_parser('review', help='Review a pull request diff')
    p_review.add_argument('--provider', choices=['local', 'github'], default='local')
    p_review.add_argument('--diff', help='Unified diff file (local provider)')
    p_review.add_argument('--repo', required=True, help='owner/name')
    p_review.add_argument('--pr', type=int, required=True, help='Pull request number')
    p_review.add_argument('--title', help='Pull request title')
    p_review.add_argument('--sha', help='Head commit sha (github provider looks it up if omitted)')
    p_review.add_argument('--config', help=f'Config file (default: ./{CONFIG_FILENAME})')
    p_review.add_argument('--out', default='review-out', help='Output directory for reports and local feedback')
    p_review.add_argument('--stats', help='Append run stats to this JSONL file')
    p_review.add_argument('--no-feedback', action='store_true', help='Skip check/comment publishing')
    p_review.add_argument('--fail-under', type=float, help='Exit 1 when the total score is below this')
    p_review.set_defaults(func=cmd_review)

    # rf config
    p_config = subparsers.add_parser('config', help='Manage .ai-review.yml')
    config_sub = p_config.add_subparsers(dest='config_cmd', required=True)

    # rf config init
    p_init = config_sub.add_parser('init', help='Write a default config file')
    p_init.add_argument('--path', default=CONFIG_FILENAME)
    p_init.add_argument('--force', action='store_true')
    p_init.set_defaults(func=cmd_config_init)

    # rf config validate
    p_validate = config_sub.add_parser('validate', help='Validate a config file')
    p_validate.add_argument('path', nargs='?', default=CONFIG_FILENAME)
    p_validate.set_defaults(func=cmd_config_validate)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
