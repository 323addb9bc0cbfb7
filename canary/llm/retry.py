"""
Quota-aware retry for model calls.

Policy:
- Exponential backoff (1s initial, x2, 60s cap, +/-10% jitter) between attempts.
- Only rate-limit errors (HTTP 429 / RESOURCE_EXHAUSTED) are retried. Anything else is
  permanent and surfaces after the first attempt.
- A rate-limit error may carry google.rpc detail entries. A RetryInfo `retryDelay`
  replaces the computed wait for the next attempt only; QuotaFailure violations are
  logged and otherwise ignored.
- Waits are cancellable through a `threading.Event`.

Error shape is duck-typed on the google-genai `APIError` attributes (`code`, `status`,
`details`) so other callers can raise `TransientUpstreamError` to opt into retries.
"""

from __future__ import annotations

import logging
import random
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

from canary.core.errors import (
    AnalysisCancelledError,
    PermanentUpstreamError,
    RetryExhaustedError,
    TransientUpstreamError,
)

logger = logging.getLogger(__name__)

TYPE_RETRY_INFO = "type.googleapis.com/google.rpc.RetryInfo"
TYPE_QUOTA_FAILURE = "type.googleapis.com/google.rpc.QuotaFailure"

# google.protobuf.Duration JSON form: decimal seconds with an "s" suffix ("30s", "1.5s").
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")

T = TypeVar("T")

# wait(seconds, cancel) -> True when cancelled during the wait
Waiter = Callable[[float, Optional[threading.Event]], bool]


@dataclass(frozen=True)
class BackoffPolicy:
    initial_seconds: float = 1.0
    multiplier: float = 2.0
    max_seconds: float = 60.0
    jitter: float = 0.1


@dataclass
class RetryState:
    """Per-call retry bookkeeping. Never shared between calls."""

    attempt: int
    interval: float
    hint: Optional[float] = None

    def next_wait(self, policy: BackoffPolicy, rng: random.Random) -> float:
        if self.hint is not None:
            wait, self.hint = self.hint, None
            return wait
        delta = policy.jitter * self.interval
        wait = self.interval + rng.uniform(-delta, delta)
        self.interval = min(self.interval * policy.multiplier, policy.max_seconds)
        return wait


def parse_retry_delay(raw: Any) -> Optional[float]:
    """Parse a RetryInfo duration ("30s", "2.5s"). Any other format is ignored."""
    if not isinstance(raw, str):
        return None
    m = _DURATION_RE.match(raw.strip())
    if not m:
        return None
    seconds = float(m.group(1))
    return seconds if seconds > 0 else None


def is_rate_limited(err: BaseException) -> bool:
    if isinstance(err, TransientUpstreamError):
        return True
    code = getattr(err, "code", None)
    if code is None:
        code = getattr(err, "status_code", None)
    if str(code) == "429":
        return True
    status = getattr(err, "status", None)
    return str(status or "").upper() == "RESOURCE_EXHAUSTED"


def _detail_entries(err: BaseException) -> List[Dict[str, Any]]:
    details = getattr(err, "details", None)
    # google-genai keeps the whole error body: {"error": {"details": [...]}}
    if isinstance(details, dict):
        inner = details.get("error", details)
        details = inner.get("details") if isinstance(inner, dict) else None
    if not isinstance(details, list):
        return []
    return [d for d in details if isinstance(d, dict)]


def inspect_rate_limit(err: BaseException) -> Optional[float]:
    """
    Walk the structured error details of a rate-limit error.

    Returns the server-suggested wait in seconds (or None). Quota violations are logged.
    """
    hint: Optional[float] = None
    for detail in _detail_entries(err):
        dtype = detail.get("@type")
        if dtype == TYPE_RETRY_INFO:
            parsed = parse_retry_delay(detail.get("retryDelay"))
            if parsed is not None:
                hint = parsed
        elif dtype == TYPE_QUOTA_FAILURE:
            for v in detail.get("violations") or []:
                if not isinstance(v, dict):
                    continue
                logger.warning(
                    "Quota violation - API rate limit exceeded: quota_metric=%s quota_id=%s quota_value=%s quota_dimensions=%s",
                    v.get("quotaMetric"),
                    v.get("quotaId"),
                    v.get("quotaValue"),
                    v.get("quotaDimensions"),
                )
    return hint


def _event_wait(seconds: float, cancel: Optional[threading.Event]) -> bool:
    if cancel is None:
        time.sleep(seconds)
        return False
    return cancel.wait(seconds)


class RetryController:
    """Runs one upstream operation with bounded, quota-aware retries."""

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        *,
        wait: Optional[Waiter] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.policy = policy or BackoffPolicy()
        self._wait = wait or _event_wait
        self._rng = rng or random.Random()

    def execute(
        self,
        operation: Callable[[], T],
        max_attempts: int,
        cancel: Optional[threading.Event] = None,
    ) -> T:
        """
        Call `operation` (exactly one upstream attempt per call) until it succeeds.

        Raises:
            PermanentUpstreamError: first non rate-limit failure
            RetryExhaustedError: rate limited on all `max_attempts` attempts
            AnalysisCancelledError: `cancel` was set before an attempt or during a wait
        """
        max_attempts = max(1, int(max_attempts))
        state = RetryState(attempt=0, interval=self.policy.initial_seconds)

        while True:
            if cancel is not None and cancel.is_set():
                raise AnalysisCancelledError(f"analysis cancelled before attempt {state.attempt + 1}")
            state.attempt += 1
            try:
                return operation()
            except Exception as e:
                logger.error(
                    "Model API error: attempt=%d code=%s status=%s error=%s",
                    state.attempt,
                    getattr(e, "code", None),
                    getattr(e, "status", None),
                    e,
                )
                if not is_rate_limited(e):
                    raise PermanentUpstreamError(
                        f"model call failed after {state.attempt} attempt(s), last error: {e}",
                        attempts=state.attempt,
                        last_error=e,
                    ) from e

                hint = inspect_rate_limit(e)
                if state.attempt >= max_attempts:
                    raise RetryExhaustedError(
                        f"max retries exceeded after {state.attempt} attempts, last error: {e}",
                        attempts=state.attempt,
                        last_error=e,
                    ) from e

                if hint is not None:
                    state.hint = hint
                    logger.warning(
                        "Rate limit exceeded, using API-suggested wait time: attempt=%d wait=%.3fs",
                        state.attempt,
                        hint,
                    )
                else:
                    logger.warning("Rate limit exceeded, using exponential backoff: attempt=%d", state.attempt)

            delay = state.next_wait(self.policy, self._rng)
            if self._wait(delay, cancel):
                raise AnalysisCancelledError(f"analysis cancelled while waiting {delay:.3f}s to retry")
