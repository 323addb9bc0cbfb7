"""
GitHub remediation provider: opens an issue when a canary is failed.

Authentication is a personal or bot token (mounted `github_token` secret or GITHUB_TOKEN).
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import requests

from canary.core.config import EngineConfig
from canary.core.errors import RemediationError

logger = logging.getLogger(__name__)

_REPO_RE = re.compile(r"^(?:https?://[^/]+/|git@[^:]+:)?([\w.-]+)/([\w.-]+?)(?:\.git)?/?$")

_MAX_LOG_LINES = 40


class Remediator(Protocol):
    def remediate(
        self,
        *,
        log_context: str,
        narrative: str,
        repo_url: str,
        base_branch: str,
        model: str,
    ) -> Optional[str]:
        """Open a remediation artifact for a failed canary. Returns its URL when known."""
        ...


def parse_repo(repo_url: str) -> str:
    """
    Normalize a repository reference to "owner/repo".

    Accepts https URLs, scp-style git URLs, and bare "owner/repo".
    """
    m = _REPO_RE.match((repo_url or "").strip())
    if not m:
        raise RemediationError(f"invalid GitHub repository URL: {repo_url!r}")
    return f"{m.group(1)}/{m.group(2)}"


def _truncate_lines(text: str, keep: int = _MAX_LOG_LINES) -> str:
    lines = text.split("\n")
    if len(lines) <= keep:
        return text
    half = keep // 2
    return "\n".join(lines[:half]) + f"\n... [truncated {len(lines) - keep} lines] ...\n" + "\n".join(lines[-half:])


def build_issue_body(*, log_context: str, narrative: str, base_branch: str, model: str) -> str:
    return (
        "## Canary analysis failed\n\n"
        f"**Model:** `{model}`\n"
        f"**Base branch:** `{base_branch}`\n\n"
        "### Analysis\n\n"
        f"{narrative or '(no analysis text returned)'}\n\n"
        "### Logs\n\n"
        "```\n"
        f"{_truncate_lines(log_context)}\n"
        "```\n"
    )


class GitHubIssueRemediator:
    """Token-authenticated issue writer for one GitHub API endpoint."""

    def __init__(self, token: str, *, api_url: str = "https://api.github.com", timeout: float = 10) -> None:
        if not token:
            raise RemediationError("GitHub token is required for failure remediation")
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, payload: dict) -> Dict[str, Any]:
        response = requests.post(
            f"{self.api_url}{path}",
            json=payload,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected GitHub response type: {type(data).__name__}")
        return data

    def create_issue(self, repo: str, title: str, body: str, labels: Optional[List[str]] = None) -> str:
        """Create an issue in "owner/repo" and return its html URL."""
        payload: dict = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        return str(self._post(f"/repos/{repo}/issues", payload).get("html_url", ""))

    def remediate(
        self,
        *,
        log_context: str,
        narrative: str,
        repo_url: str,
        base_branch: str,
        model: str,
    ) -> Optional[str]:
        if not repo_url:
            raise RemediationError("GitHub repository URL not configured (githubUrl)")
        repo = parse_repo(repo_url)
        branch = base_branch or "main"
        title = f"Canary analysis failed ({datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')})"
        body = build_issue_body(log_context=log_context, narrative=narrative, base_branch=branch, model=model)
        try:
            url = self.create_issue(repo, title, body, labels=["canary-failure"])
        except (requests.exceptions.RequestException, ValueError) as e:
            raise RemediationError(f"failed to create GitHub issue in {repo}: {e}") from e
        logger.info("Created GitHub issue for failed canary: repo=%s url=%s", repo, url)
        return url


def get_remediator(cfg: EngineConfig) -> Optional[Remediator]:
    """Issue remediation when a GitHub token is configured, else None."""
    if not cfg.github_token:
        return None
    return GitHubIssueRemediator(cfg.github_token)
