"""
Tests for the quota-aware retry controller.

No test sleeps: the controller's wait function is replaced with a recorder.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Any, Dict, List, Optional

import pytest

from canary.core.errors import (
    AnalysisCancelledError,
    PermanentUpstreamError,
    RetryExhaustedError,
    TransientUpstreamError,
)
from canary.llm.retry import (
    TYPE_QUOTA_FAILURE,
    TYPE_RETRY_INFO,
    BackoffPolicy,
    RetryController,
    RetryState,
    inspect_rate_limit,
    is_rate_limited,
    parse_retry_delay,
)


class _FakeAPIError(Exception):
    """Same attribute shape as google.genai.errors.APIError."""

    def __init__(self, code: int, status: Optional[str] = None, details: Any = None) -> None:
        super().__init__(f"{code} {status}")
        self.code = code
        self.status = status
        self.details = details


def _rate_limit(delay: Optional[str] = "2s", *, wrapped: bool = True) -> _FakeAPIError:
    entries: List[Dict[str, Any]] = [
        {
            "@type": TYPE_QUOTA_FAILURE,
            "violations": [
                {
                    "quotaMetric": "generativelanguage.googleapis.com/generate_content_free_tier_requests",
                    "quotaId": "GenerateRequestsPerMinutePerProjectPerModel-FreeTier",
                    "quotaValue": "15",
                    "quotaDimensions": {"model": "gemini-2.0-flash", "location": "global"},
                }
            ],
        }
    ]
    if delay is not None:
        entries.append({"@type": TYPE_RETRY_INFO, "retryDelay": delay})
    details: Any = {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "details": entries}} if wrapped else entries
    return _FakeAPIError(429, "RESOURCE_EXHAUSTED", details)


class _WaitRecorder:
    def __init__(self, cancel_on_call: Optional[int] = None) -> None:
        self.waits: List[float] = []
        self._cancel_on_call = cancel_on_call

    def __call__(self, seconds: float, cancel: Optional[threading.Event]) -> bool:
        self.waits.append(seconds)
        return self._cancel_on_call is not None and len(self.waits) >= self._cancel_on_call


def _always(err: Exception):  # type: ignore[no-untyped-def]
    calls = {"n": 0}

    def op():  # type: ignore[no-untyped-def]
        calls["n"] += 1
        raise err

    return op, calls


def test_success_first_attempt_returns_value() -> None:
    waits = _WaitRecorder()
    rc = RetryController(wait=waits)
    assert rc.execute(lambda: "ok", 3) == "ok"
    assert waits.waits == []


def test_rate_limit_hint_used_for_each_retry_and_attempts_capped() -> None:
    waits = _WaitRecorder()
    op, calls = _always(_rate_limit("2s"))
    rc = RetryController(wait=waits)

    with pytest.raises(RetryExhaustedError) as exc:
        rc.execute(op, 3)

    assert calls["n"] == 3
    assert waits.waits == [2.0, 2.0]
    assert exc.value.attempts == 3
    assert "3 attempts" in str(exc.value)
    assert isinstance(exc.value.last_error, _FakeAPIError)


def test_non_rate_limit_error_is_permanent_after_one_attempt() -> None:
    waits = _WaitRecorder()
    op, calls = _always(_FakeAPIError(400, "INVALID_ARGUMENT"))
    rc = RetryController(wait=waits)

    with pytest.raises(PermanentUpstreamError) as exc:
        rc.execute(op, 3)

    assert calls["n"] == 1
    assert waits.waits == []
    assert exc.value.attempts == 1


def test_plain_exception_is_permanent() -> None:
    op, calls = _always(RuntimeError("boom"))
    with pytest.raises(PermanentUpstreamError):
        RetryController(wait=_WaitRecorder()).execute(op, 3)
    assert calls["n"] == 1


def test_recovers_after_transient_rate_limit() -> None:
    waits = _WaitRecorder()
    state = {"n": 0}

    def op():  # type: ignore[no-untyped-def]
        state["n"] += 1
        if state["n"] == 1:
            raise _rate_limit("5s")
        return "done"

    assert RetryController(wait=waits).execute(op, 3) == "done"
    assert waits.waits == [5.0]


def test_exponential_backoff_without_hint_within_jitter() -> None:
    waits = _WaitRecorder()
    op, calls = _always(_rate_limit(None))
    rc = RetryController(wait=waits, rng=random.Random(7))

    with pytest.raises(RetryExhaustedError):
        rc.execute(op, 4)

    assert calls["n"] == 4
    assert len(waits.waits) == 3
    for got, base in zip(waits.waits, [1.0, 2.0, 4.0]):
        assert base * 0.9 <= got <= base * 1.1


def test_hint_overrides_next_wait_only() -> None:
    policy = BackoffPolicy(jitter=0.0)
    rng = random.Random(0)
    state = RetryState(attempt=1, interval=policy.initial_seconds, hint=30.0)

    assert state.next_wait(policy, rng) == 30.0
    assert state.next_wait(policy, rng) == 1.0
    assert state.next_wait(policy, rng) == 2.0


def test_backoff_interval_capped() -> None:
    policy = BackoffPolicy(jitter=0.0)
    state = RetryState(attempt=1, interval=50.0)
    rng = random.Random(0)
    assert state.next_wait(policy, rng) == 50.0
    assert state.next_wait(policy, rng) == 60.0
    assert state.next_wait(policy, rng) == 60.0


def test_cancel_during_wait_aborts() -> None:
    waits = _WaitRecorder(cancel_on_call=1)
    op, calls = _always(_rate_limit("30s"))

    with pytest.raises(AnalysisCancelledError):
        RetryController(wait=waits).execute(op, 3, cancel=threading.Event())

    assert calls["n"] == 1
    assert waits.waits == [30.0]


def test_cancel_before_first_attempt() -> None:
    cancel = threading.Event()
    cancel.set()
    op, calls = _always(_rate_limit())

    with pytest.raises(AnalysisCancelledError):
        RetryController(wait=_WaitRecorder()).execute(op, 3, cancel=cancel)
    assert calls["n"] == 0


def test_default_wait_returns_immediately_when_cancelled() -> None:
    cancel = threading.Event()
    cancel.set()
    op, calls = _always(_rate_limit("60s"))

    # Real event-based wait: an already-set event must not block for 60s.
    with pytest.raises(AnalysisCancelledError):
        RetryController().execute(op, 3, cancel=_SetAfterFirstCheck(cancel))
    assert calls["n"] == 1


class _SetAfterFirstCheck:
    """Event proxy that reports unset on the pre-attempt check, then behaves like `inner`."""

    def __init__(self, inner: threading.Event) -> None:
        self._inner = inner
        self._checked = False

    def is_set(self) -> bool:
        if not self._checked:
            self._checked = True
            return False
        return self._inner.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._inner.wait(timeout)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("30s", 30.0),
        ("2s", 2.0),
        ("1.5s", 1.5),
        (" 4s ", 4.0),
        ("0s", None),
        ("30", None),
        ("1m30s", None),
        ("500ms", None),
        ("", None),
        (None, None),
        (30, None),
    ],
)
def test_parse_retry_delay_accepts_seconds_only(raw: Any, expected: Optional[float]) -> None:
    assert parse_retry_delay(raw) == expected


def test_is_rate_limited_variants() -> None:
    assert is_rate_limited(_FakeAPIError(429))
    assert is_rate_limited(_FakeAPIError(0, "RESOURCE_EXHAUSTED"))
    assert is_rate_limited(TransientUpstreamError("slow down", attempts=0))
    assert not is_rate_limited(_FakeAPIError(500, "INTERNAL"))
    assert not is_rate_limited(ValueError("x"))


def test_inspect_rate_limit_reads_unwrapped_details_and_logs_quota(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="canary.llm.retry")
    assert inspect_rate_limit(_rate_limit("7s", wrapped=False)) == 7.0
    assert "quota_id=GenerateRequestsPerMinutePerProjectPerModel-FreeTier" in caplog.text


def test_inspect_rate_limit_tolerates_garbage_details() -> None:
    assert inspect_rate_limit(_FakeAPIError(429, details="nope")) is None
    assert inspect_rate_limit(_FakeAPIError(429, details=[{"@type": TYPE_RETRY_INFO, "retryDelay": "soon"}])) is None
    assert inspect_rate_limit(_FakeAPIError(429, details=[{"@type": TYPE_QUOTA_FAILURE, "violations": ["x"]}])) is None
