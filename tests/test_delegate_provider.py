"""
Unit tests for the diagnostic agent HTTP client with mocked requests.
"""

from __future__ import annotations

from typing import Optional
from unittest.mock import MagicMock, patch

import pytest
import requests

from canary.core.errors import DelegateResponseError, DelegateUnreachableError
from canary.core.models import build_log_context
from canary.providers.delegate_provider import (
    DELEGATE_USER_ID,
    DefaultDelegateClient,
    DelegateClient,
    get_delegate_client,
    split_logs,
)


def _resp(status_code: int = 200, payload: Optional[dict] = None, json_error: Optional[Exception] = None) -> MagicMock:
    r = MagicMock()
    r.status_code = status_code
    if json_error is not None:
        r.json.side_effect = json_error
    else:
        r.json.return_value = payload if payload is not None else {}
    return r


def test_split_logs_on_markers() -> None:
    stable, canary = split_logs(build_log_context("s1\ns2", "c1"))
    assert stable.strip() == "s1\ns2"
    assert canary.strip() == "c1"


def test_split_logs_without_markers_is_all_stable() -> None:
    assert split_logs("plain text") == ("plain text", "")
    assert split_logs("--- STABLE LOGS ---\nonly stable") == ("--- STABLE LOGS ---\nonly stable", "")


def test_health_check_404_counts_as_reachable() -> None:
    client = DefaultDelegateClient("http://agent.test:8080/", health_timeout=7)
    with patch("canary.providers.delegate_provider.requests.get", return_value=_resp(404)) as get:
        client.health_check()

    get.assert_called_once_with("http://agent.test:8080/", timeout=7)


def test_health_check_connection_refused_is_unreachable() -> None:
    client = DefaultDelegateClient("http://agent.test:8080")
    with patch(
        "canary.providers.delegate_provider.requests.get",
        side_effect=requests.exceptions.ConnectionError("connection refused"),
    ):
        with pytest.raises(DelegateUnreachableError, match="health check failed"):
            client.health_check()


def test_analyze_posts_wire_request_and_decodes_response() -> None:
    client = DefaultDelegateClient("http://agent.test:8080", analyze_timeout=300)
    payload = {
        "analysis": "Canary fails DB connections",
        "rootCause": "wrong DSN",
        "remediation": "fix env var",
        "prLink": "https://github.com/acme/app/pull/7",
        "promote": False,
        "confidence": 95,
    }
    with patch("canary.providers.delegate_provider.requests.post", return_value=_resp(200, payload)) as post:
        result = client.analyze("prod", "app-canary-abc12", "stable text", "canary text")

    args, kwargs = post.call_args
    assert args[0] == "http://agent.test:8080/a2a/analyze"
    assert kwargs["timeout"] == 300
    body = kwargs["json"]
    assert body["userId"] == DELEGATE_USER_ID
    assert "Namespace: prod, Pod: app-canary-abc12" in body["prompt"]
    assert body["context"] == {
        "namespace": "prod",
        "podName": "app-canary-abc12",
        "stableLogs": "stable text",
        "canaryLogs": "canary text",
    }

    assert result.analysis == "Canary fails DB connections"
    assert result.root_cause == "wrong DSN"
    assert result.pr_link == "https://github.com/acme/app/pull/7"
    assert result.promote is False
    assert result.confidence == 95


def test_analyze_non_200_is_response_error() -> None:
    client = DefaultDelegateClient("http://agent.test:8080")
    with patch("canary.providers.delegate_provider.requests.post", return_value=_resp(500)):
        with pytest.raises(DelegateResponseError) as exc:
            client.analyze("prod", "pod-1", "", "")
    assert exc.value.status_code == 500


def test_analyze_undecodable_body_is_response_error() -> None:
    client = DefaultDelegateClient("http://agent.test:8080")
    with patch(
        "canary.providers.delegate_provider.requests.post",
        return_value=_resp(200, json_error=ValueError("Expecting value")),
    ):
        with pytest.raises(DelegateResponseError, match="failed to decode response"):
            client.analyze("prod", "pod-1", "", "")


def test_analyze_timeout_is_unreachable() -> None:
    client = DefaultDelegateClient("http://agent.test:8080")
    with patch(
        "canary.providers.delegate_provider.requests.post",
        side_effect=requests.exceptions.Timeout("read timed out"),
    ):
        with pytest.raises(DelegateUnreachableError):
            client.analyze("prod", "pod-1", "", "")


def test_get_delegate_client_uses_config(engine_config) -> None:
    client = get_delegate_client(engine_config)
    assert isinstance(client, DelegateClient)
    assert client.base_url == "http://agent.test:8080"  # type: ignore[attr-defined]
    assert client.analyze_timeout == 300  # type: ignore[attr-defined]
    assert client.health_timeout == 10  # type: ignore[attr-defined]


def test_split_logs_returns_exact_substrings() -> None:
    assert split_logs("x--- STABLE LOGS ---AB--- CANARY LOGS ---CD") == ("AB", "CD")


@pytest.mark.parametrize("confidence,expected", [(float("inf"), 100), (float("-inf"), 0), (int("9" * 400), 100)])
def test_analyze_clamps_out_of_range_confidence(confidence, expected) -> None:  # type: ignore[no-untyped-def]
    client = DefaultDelegateClient("http://agent.test:8080")
    payload = {"analysis": "ok", "promote": True, "confidence": confidence}
    with patch("canary.providers.delegate_provider.requests.post", return_value=_resp(200, payload)):
        result = client.analyze("prod", "pod-1", "", "")

    assert result.confidence == expected


def test_analyze_nan_confidence_is_response_error() -> None:
    client = DefaultDelegateClient("http://agent.test:8080")
    payload = {"analysis": "ok", "promote": True, "confidence": float("nan")}
    with patch("canary.providers.delegate_provider.requests.post", return_value=_resp(200, payload)):
        with pytest.raises(DelegateResponseError, match="failed to decode response"):
            client.analyze("prod", "pod-1", "", "")
