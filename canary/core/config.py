from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from canary.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_DIR = "/etc/secrets"
DEFAULT_DELEGATE_URL = "http://kubernetes-agent.argo-rollouts.svc.cluster.local:8080"
DEFAULT_MODEL = "gemini-2.0-flash"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int, *, lo: int, hi: int) -> int:
    try:
        v = int((os.getenv(name) or "").strip() or str(default))
    except ValueError:
        v = default
    return max(lo, min(v, hi))


def _read_secret(secrets_dir: Path, name: str) -> Optional[str]:
    """Read one mounted secret file. Missing or empty files read as None."""
    path = secrets_dir / name
    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.debug("Secret file %s not readable: %s", path, e)
        return None
    return value or None


@dataclass(frozen=True)
class EngineConfig:
    # Credentials
    google_api_key: Optional[str]
    google_cloud_project: Optional[str]
    github_token: Optional[str]

    # Delegate (remote diagnostic agent)
    delegate_url: str
    delegate_timeout_seconds: int
    health_timeout_seconds: int

    # Model calls
    default_model: str
    max_attempts: int
    llm_mock: bool

    secrets_dir: str = DEFAULT_SECRETS_DIR
    log_level: str = "info"


def load_engine_config(secrets_dir: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration once, before any component is constructed.

    Secrets come from mounted files under `SECRETS_DIR` (default /etc/secrets) and fall
    back to environment variables of the same name in upper case:
    - google_api_key / GOOGLE_API_KEY
    - google_cloud_project / GOOGLE_CLOUD_PROJECT (optional)
    - github_token / GITHUB_TOKEN
    """
    sdir = Path(secrets_dir or (os.getenv("SECRETS_DIR") or "").strip() or DEFAULT_SECRETS_DIR)

    api_key = _read_secret(sdir, "google_api_key") or (os.getenv("GOOGLE_API_KEY") or "").strip() or None
    project = _read_secret(sdir, "google_cloud_project") or (os.getenv("GOOGLE_CLOUD_PROJECT") or "").strip() or None
    github_token = _read_secret(sdir, "github_token") or (os.getenv("GITHUB_TOKEN") or "").strip() or None

    return EngineConfig(
        google_api_key=api_key,
        google_cloud_project=project,
        github_token=github_token,
        delegate_url=((os.getenv("K8S_AGENT_URL") or "").strip() or DEFAULT_DELEGATE_URL).rstrip("/"),
        # Delegate-side analysis may itself run a multi-step investigation.
        delegate_timeout_seconds=_env_int("K8S_AGENT_TIMEOUT_SECONDS", 300, lo=60, hi=1800),
        health_timeout_seconds=_env_int("K8S_AGENT_HEALTH_TIMEOUT_SECONDS", 10, lo=1, hi=60),
        default_model=(os.getenv("LLM_MODEL") or "").strip() or DEFAULT_MODEL,
        max_attempts=_env_int("LLM_MAX_ATTEMPTS", 3, lo=1, hi=10),
        llm_mock=_env_bool("LLM_MOCK", False),
        secrets_dir=str(sdir),
        log_level=(os.getenv("LOG_LEVEL") or "").strip().lower() or "info",
    )


def validate_engine_config(cfg: EngineConfig) -> None:
    if not cfg.google_api_key and not cfg.llm_mock:
        raise ConfigurationError("google API key is required but not configured")
    if not cfg.github_token:
        logger.warning("GitHub token not configured; failure remediation is disabled")
    if not cfg.google_cloud_project:
        logger.warning(
            "Google Cloud project not configured (file %s or GOOGLE_CLOUD_PROJECT)",
            Path(cfg.secrets_dir) / "google_cloud_project",
        )
