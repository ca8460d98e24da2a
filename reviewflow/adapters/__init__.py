"""SCM adapters.

Adapters are blocking and provider-specific; the orchestrator resolves one
per run through AdapterRouter.
"""

from reviewflow.adapters.base import AdapterError, AdapterRouter, ScmAdapter
from reviewflow.adapters.github import GithubAdapter
from reviewflow.adapters.local import LocalDiffAdapter, parse_unified_diff

__all__ = [
    "AdapterError",
    "AdapterRouter",
    "ScmAdapter",
    "GithubAdapter",
    "LocalDiffAdapter",
    "parse_unified_diff",
]
