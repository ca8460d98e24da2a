"""
GitHub adapter over the gh CLI.

All calls go through `gh api` so authentication is whatever `gh auth login`
set up. Every call has a timeout and raises AdapterError on failure.
"""

import json
import logging
import subprocess

from reviewflow.adapters.base import AdapterError, ScmAdapter
from reviewflow.lib.types import ChangeKind, CheckSummary, DiffHunk, InlineComment, PullRef, RepoRef

logger = logging.getLogger(__name__)


PROVIDER_GITHUB = "github"

# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

STATUS_CONTEXT = "reviewflow"

# CheckSummary conclusion -> commit status state
STATUS_STATES = {
    "success": "success",
    "failure": "failure",
    "neutral": "error",
}

CHANGE_KINDS = {
    "added": ChangeKind.ADDED,
    "removed": ChangeKind.DELETED,
    "renamed": ChangeKind.RENAMED,
}

# GitHub rejects commit status descriptions over 140 characters
MAX_STATUS_DESCRIPTION = 140


def comment_marker(key: str) -> str:
    """Hidden anchor identifying the summary comment across runs."""
    return f"<!-- reviewflow:{key} -->"


def check_gh_available() -> tuple[bool, str]:
    """Check gh CLI is installed and authenticated.

    Returns: (ok, error_message)
    """
    try:
        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            return False, "GitHub CLI not authenticated\n  Run: gh auth login"
        return True, ""
    except FileNotFoundError:
        return False, "GitHub CLI (gh) not found\n  Install: https://cli.github.com/"
    except subprocess.TimeoutExpired:
        return False, "GitHub CLI timed out"


class GithubAdapter(ScmAdapter):
    def __init__(self, timeout: int = GH_TIMEOUT_SECONDS):
        self.timeout = timeout

    @property
    def provider(self) -> str:
        return PROVIDER_GITHUB

    def _gh_api(self, operation: str, args: list[str], input_data: dict | None = None) -> str:
        """Run `gh api <args>` and return stdout."""
        cmd = ["gh", "api", *args]
        if input_data is not None:
            cmd += ["--input", "-"]
        try:
            result = subprocess.run(
                cmd,
                input=json.dumps(input_data) if input_data is not None else None,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise AdapterError(self.provider, f"GitHub API timeout after {self.timeout}s", operation) from None
        except FileNotFoundError:
            raise AdapterError(self.provider, "GitHub CLI (gh) not found", operation) from None
        except subprocess.SubprocessError as e:
            raise AdapterError(self.provider, f"GitHub operation failed: {e}", operation) from e

        if result.returncode != 0:
            raise AdapterError(self.provider, result.stderr.strip() or f"gh exited {result.returncode}", operation)
        return result.stdout

    def list_diff(self, repo: RepoRef, pull: PullRef) -> list[DiffHunk]:
        out = self._gh_api("list_diff", [
            f"repos/{repo.full_name}/pulls/{pull.number}/files",
            "--paginate",
            "--jq", ".[] | @json",
        ])
        hunks = []
        for line in out.splitlines():
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError as e:
                raise AdapterError(self.provider, f"Invalid JSON from gh: {e}", "list_diff") from e
            change = CHANGE_KINDS.get(item.get("status", ""), ChangeKind.MODIFIED)
            hunks.append(DiffHunk(
                file_path=item["filename"],
                change=change,
                patch=item.get("patch") or "",  # Absent for binary and very large files
                lines_added=item.get("additions", 0),
                lines_deleted=item.get("deletions", 0),
                old_path=item.get("previous_filename"),
            ))
        logger.debug(f"Fetched {len(hunks)} changed files for {repo.full_name}#{pull.number}")
        return hunks

    def _head_sha(self, repo: RepoRef, pull: PullRef) -> str:
        if pull.head_sha:
            return pull.head_sha
        out = self._gh_api("head_sha", [f"repos/{repo.full_name}/pulls/{pull.number}", "--jq", ".head.sha"])
        sha = out.strip()
        if not sha:
            raise AdapterError(self.provider, f"No head sha for PR #{pull.number}", "head_sha")
        return sha

    def upsert_check(self, repo: RepoRef, pull: PullRef, summary: CheckSummary) -> None:
        """Set the reviewflow commit status on the PR head.

        Statuses are keyed by context, so posting again replaces the previous one.
        """
        sha = self._head_sha(repo, pull)
        args = [
            f"repos/{repo.full_name}/statuses/{sha}",
            "-f", f"state={STATUS_STATES.get(summary.conclusion, 'error')}",
            "-f", f"context={STATUS_CONTEXT}",
            "-f", f"description={summary.title[:MAX_STATUS_DESCRIPTION]}",
        ]
        if summary.details_url:
            args += ["-f", f"target_url={summary.details_url}"]
        self._gh_api("upsert_check", args)

    def post_inline_comments(self, repo: RepoRef, pull: PullRef, comments: list[InlineComment]) -> None:
        if not comments:
            return
        payload_comments = []
        for c in comments:
            entry = {"path": c.file_path, "line": c.line, "side": c.side, "body": c.body}
            if c.start_line is not None:
                entry["start_line"] = c.start_line
                entry["start_side"] = c.side
            payload_comments.append(entry)
        payload = {
            "commit_id": self._head_sha(repo, pull),
            "event": "COMMENT",
            "comments": payload_comments,
        }
        self._gh_api("post_inline_comments", [
            f"repos/{repo.full_name}/pulls/{pull.number}/reviews", "--method", "POST",
        ], input_data=payload)

    def _find_comment_id(self, repo: RepoRef, pull: PullRef, key: str) -> int | None:
        marker = comment_marker(key)
        out = self._gh_api("find_summary_comment", [
            f"repos/{repo.full_name}/issues/{pull.number}/comments",
            "--paginate",
            "--jq", f".[] | select(.body | contains({json.dumps(marker)})) | .id",
        ])
        ids = [int(x) for x in out.split() if x.strip().isdigit()]
        return ids[0] if ids else None

    def create_or_update_summary_comment(self, repo: RepoRef, pull: PullRef, key: str, body: str) -> None:
        body = f"{comment_marker(key)}\n{body}"
        comment_id = self._find_comment_id(repo, pull, key)
        if comment_id is None:
            self._gh_api("create_summary_comment", [
                f"repos/{repo.full_name}/issues/{pull.number}/comments", "-f", f"body={body}",
            ])
        else:
            self._gh_api("update_summary_comment", [
                f"repos/{repo.full_name}/issues/comments/{comment_id}", "--method", "PATCH", "-f", f"body={body}",
            ])
