"""Shared fixtures for reviewflow tests."""

from datetime import datetime, timezone

import pytest

from reviewflow.lib.types import Dimension, Finding, PullRef, RepoRef, ReviewRun, Severity


def build_finding(**overrides) -> Finding:
    data = dict(
        id="patterns.test@app.py:10",
        file_path="app.py",
        start_line=10,
        end_line=10,
        severity=Severity.MAJOR,
        dimension=Dimension.QUALITY,
        title="Something is off",
        sources=frozenset({"patterns"}),
        confidence=0.8,
        evidence="x = 1",
    )
    data.update(overrides)
    return Finding(**data)


@pytest.fixture
def make_finding():
    """Factory for Findings with sensible defaults."""
    return build_finding


@pytest.fixture
def repo():
    return RepoRef(provider="local", owner="acme", name="shop")


@pytest.fixture
def pull():
    return PullRef(number=42, title="Add checkout", head_sha="abc123")


@pytest.fixture
def make_run(repo, pull):
    def _make(**overrides):
        data = dict(
            run_id="run-20250101-120000-abcdef",
            repo=repo,
            pull=pull,
            started_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
        )
        data.update(overrides)
        return ReviewRun(**data)
    return _make
