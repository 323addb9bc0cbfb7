"""
Client for the remote diagnostic agent (delegated analysis mode).

Wire protocol:
- GET  {base}/             reachability probe; any HTTP status means reachable
- POST {base}/a2a/analyze  {userId, prompt, context:{namespace, podName, stableLogs, canaryLogs}}
                           -> {analysis, rootCause, remediation, prLink?, promote, confidence}
"""

from __future__ import annotations

import logging
from typing import Protocol, Tuple, runtime_checkable

import requests
from pydantic import ValidationError

from canary.core.config import EngineConfig
from canary.core.errors import DelegateResponseError, DelegateUnreachableError
from canary.core.models import CANARY_MARKER, STABLE_MARKER, DelegateContext, DelegateRequest, DelegateResponse

logger = logging.getLogger(__name__)

DELEGATE_USER_ID = "argo-rollouts"


def split_logs(log_context: str) -> Tuple[str, str]:
    """
    Split a combined log context into (stable, canary) on the fixed markers.

    If either marker is missing, the whole context is treated as stable logs.
    """
    stable_idx = log_context.find(STABLE_MARKER)
    canary_idx = log_context.find(CANARY_MARKER)
    if stable_idx == -1 or canary_idx == -1:
        return log_context, ""
    return log_context[stable_idx + len(STABLE_MARKER) : canary_idx], log_context[canary_idx + len(CANARY_MARKER) :]


@runtime_checkable
class DelegateClient(Protocol):
    def health_check(self) -> None: ...

    def analyze(self, namespace: str, target: str, stable_logs: str, canary_logs: str) -> DelegateResponse: ...


class DefaultDelegateClient:
    """HTTP client for the diagnostic agent. Health probe uses a short timeout, analysis a long one."""

    def __init__(self, base_url: str, *, analyze_timeout: float = 300, health_timeout: float = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.analyze_timeout = analyze_timeout
        self.health_timeout = health_timeout

    def health_check(self) -> None:
        """
        Reachability-only check.

        A 404 (or any other status) still proves the agent is up; only transport
        failures (connection refused, DNS, timeout) count as unhealthy.
        """
        try:
            resp = requests.get(f"{self.base_url}/", timeout=self.health_timeout)
        except requests.exceptions.RequestException as e:
            raise DelegateUnreachableError(f"health check failed: {e}") from e
        logger.debug("Diagnostic agent responded to health check: status_code=%s", resp.status_code)

    def analyze(self, namespace: str, target: str, stable_logs: str, canary_logs: str) -> DelegateResponse:
        logger.info("Sending analysis request to diagnostic agent: namespace=%s target=%s", namespace, target)
        req = DelegateRequest(
            user_id=DELEGATE_USER_ID,
            prompt=(
                f"Analyze canary deployment issue. Namespace: {namespace}, Pod: {target}. "
                "Compare stable vs canary behavior and determine if canary should be promoted."
            ),
            context=DelegateContext(
                namespace=namespace,
                pod_name=target,
                stable_logs=stable_logs,
                canary_logs=canary_logs,
            ),
        )

        try:
            resp = requests.post(
                f"{self.base_url}/a2a/analyze",
                json=req.model_dump(by_alias=True),
                timeout=self.analyze_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise DelegateUnreachableError(f"failed to send request: {e}") from e

        if resp.status_code != 200:
            raise DelegateResponseError(f"agent returned status {resp.status_code}", status_code=resp.status_code)

        try:
            result = DelegateResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise DelegateResponseError(f"failed to decode response: {e}", status_code=resp.status_code) from e

        logger.info(
            "Received analysis from diagnostic agent: promote=%s confidence=%d has_pr=%s",
            result.promote,
            result.confidence,
            bool(result.pr_link),
        )
        return result


def get_delegate_client(cfg: EngineConfig) -> DelegateClient:
    return DefaultDelegateClient(
        cfg.delegate_url,
        analyze_timeout=cfg.delegate_timeout_seconds,
        health_timeout=cfg.health_timeout_seconds,
    )
