"""Engine error taxonomy.

Every error the engine raises to its caller derives from `CanaryError`, so the
measurement pipeline can map them to an Error phase with a single except clause.
Malformed model output has no class here: it degrades to a zero-value record.
"""

from __future__ import annotations

from typing import Optional


class CanaryError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(CanaryError):
    """Missing or invalid configuration (fatal, never retried)."""


class UpstreamError(CanaryError):
    """A model call failed; carries the attempt count and the last SDK error."""

    def __init__(self, message: str, *, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class TransientUpstreamError(UpstreamError):
    """Rate limited / resource exhausted. Retried by the retry controller."""


class PermanentUpstreamError(UpstreamError):
    """Any non rate-limit failure. Surfaced after a single attempt."""


class RetryExhaustedError(UpstreamError):
    """Rate limited on every attempt up to the configured cap."""


class AnalysisCancelledError(CanaryError):
    """The caller's cancel signal fired while waiting or before an attempt."""


class DelegateUnreachableError(CanaryError):
    """Transport-level failure reaching the remote diagnostic agent."""


class DelegateResponseError(CanaryError):
    """The remote agent answered, but with a non-success status or an undecodable body."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PodsNotFoundError(CanaryError):
    """No pod matched a label selector."""

    def __init__(self, namespace: str, label_selector: str) -> None:
        super().__init__(f"no pods found for selector {label_selector} in namespace {namespace}")
        self.namespace = namespace
        self.label_selector = label_selector


class RemediationError(CanaryError):
    """Failure-path side effect could not be completed. Logged, never propagated."""


class LogFetchError(CanaryError):
    """Kubernetes API failure while listing pods or reading their logs."""
