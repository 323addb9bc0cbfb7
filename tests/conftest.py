"""
Pytest config.

Tests import the local `canary/` package from the repo root. When a global `pytest`
entrypoint is used that root is not always on sys.path during collection, so we pin it
here.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


@pytest.fixture
def engine_config():
    """Engine config with test credentials; no env or secret files involved."""
    from canary.core.config import EngineConfig

    return EngineConfig(
        google_api_key="test-key",
        google_cloud_project=None,
        github_token="ghp_test",
        delegate_url="http://agent.test:8080",
        delegate_timeout_seconds=300,
        health_timeout_seconds=10,
        default_model="gemini-2.0-flash",
        max_attempts=3,
        llm_mock=False,
    )


@pytest.fixture(autouse=True)
def _no_real_kubernetes(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Unit tests never talk to a cluster. Tests that exercise the K8s provider stub
    `_get_core_v1` themselves.
    """

    def _fail():  # type: ignore[no-untyped-def]
        raise AssertionError("unexpected Kubernetes API access in unit test")

    monkeypatch.setattr("canary.providers.k8s_provider._get_core_v1", _fail)
