"""Canonical domain models (single source of truth).

This file is the one place where we define models used across:
- analysis inputs and outcomes (direct model call, delegated agent)
- the delegate wire contract
- verdicts and measurements reported back to the rollout controller

Design note:
- Model / delegate payloads are permissive (`extra="ignore"`) because model output and
  agent versions drift; caller-owned inputs are strict.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

STABLE_MARKER = "--- STABLE LOGS ---"
CANARY_MARKER = "--- CANARY LOGS ---"

AnalysisMode = Literal["default", "agent"]
MODE_DIRECT: AnalysisMode = "default"
MODE_DELEGATED: AnalysisMode = "agent"

_DELEGATED_ALIASES = ("agent", "delegated")


def normalize_mode(raw: Optional[str]) -> AnalysisMode:
    """Map a configured mode string onto a mode. Empty or unknown values mean direct."""
    m = (raw or "").strip().lower()
    if m in _DELEGATED_ALIASES:
        return MODE_DELEGATED
    return MODE_DIRECT


def build_log_context(stable_logs: str, canary_logs: str) -> str:
    return f"{STABLE_MARKER}\n{stable_logs}\n\n{CANARY_MARKER}\n{canary_logs}"


def _clamp_confidence(v: Any) -> int:
    if v is None:
        return 0
    if isinstance(v, bool):
        raise ValueError("confidence must be a number")
    if isinstance(v, int):
        return max(0, min(v, 100))
    try:
        f = float(v)
    except (TypeError, ValueError, OverflowError):
        raise ValueError("confidence must be a number") from None
    if math.isnan(f):
        raise ValueError("confidence must be a number")
    if math.isinf(f):
        return 100 if f > 0 else 0
    return max(0, min(int(f), 100))


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class AnalysisInput(BaseModelStrict):
    model: str
    log_context: str = ""
    extra_prompt: Optional[str] = None
    # Delegated mode only
    namespace: str = ""
    target: str = ""


class DecisionRecord(BaseModel):
    """
    Structured analysis result.

    The zero value (empty narrative, promote=False, confidence=0) is what callers get
    when model output could not be structured at all.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    narrative: str = Field(default="", alias="text")
    promote: bool = False
    confidence: int = 0
    # Delegated mode only
    root_cause: Optional[str] = None
    remediation_summary: Optional[str] = None
    change_link: Optional[str] = None

    @field_validator("narrative", mode="before")
    @classmethod
    def _narrative_str(cls, v: Any) -> str:
        return "" if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_clamp(cls, v: Any) -> int:
        return _clamp_confidence(v)


class ModelDecision(BaseModel):
    """The three fields a model is asked for in direct mode. Anything else is dropped."""

    model_config = ConfigDict(extra="ignore")

    text: str = ""
    promote: bool = False
    confidence: int = 0

    @field_validator("text", mode="before")
    @classmethod
    def _text_str(cls, v: Any) -> str:
        return "" if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_clamp(cls, v: Any) -> int:
        return _clamp_confidence(v)

    def to_record(self) -> DecisionRecord:
        return DecisionRecord(narrative=self.text, promote=self.promote, confidence=self.confidence)


@dataclass(frozen=True)
class AnalysisOutcome:
    raw_text: str
    record: DecisionRecord


class DelegateContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    namespace: str
    pod_name: str = Field(alias="podName")
    stable_logs: str = Field(default="", alias="stableLogs")
    canary_logs: str = Field(default="", alias="canaryLogs")


class DelegateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    prompt: str
    context: DelegateContext


class DelegateResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    analysis: str = ""
    root_cause: str = Field(default="", alias="rootCause")
    remediation: str = ""
    pr_link: Optional[str] = Field(default=None, alias="prLink")
    promote: bool = False
    confidence: int = 0

    @field_validator("analysis", "root_cause", "remediation", mode="before")
    @classmethod
    def _null_to_empty(cls, v: Any) -> str:
        return "" if v is None else v

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_clamp(cls, v: Any) -> int:
        return _clamp_confidence(v)

    def to_record(self) -> DecisionRecord:
        return DecisionRecord(
            narrative=self.analysis,
            promote=self.promote,
            confidence=self.confidence,
            root_cause=self.root_cause,
            remediation_summary=self.remediation,
            change_link=self.pr_link or None,
        )


VerdictKind = Literal["promote", "fail", "error"]


class Verdict(BaseModel):
    """Externally observed outcome. `value` is what the rollout controller sees."""

    model_config = ConfigDict(frozen=True)

    kind: VerdictKind
    score: float = 0.0
    value: str = ""
    message: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)


MeasurementPhase = Literal["Successful", "Failed", "Error"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Measurement(BaseModel):
    phase: MeasurementPhase
    value: str = ""
    message: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None


class MetricConfig(BaseModel):
    """Plugin configuration block attached to an analysis metric (camelCase JSON)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    model: str = ""
    stable_label: str = Field(default="", alias="stableLabel")
    canary_label: str = Field(default="", alias="canaryLabel")
    base_branch: str = Field(default="", alias="baseBranch")
    github_url: str = Field(default="", alias="githubUrl")
    analysis_mode: str = Field(default="", alias="analysisMode")
    namespace: str = ""
    pod_name: str = Field(default="", alias="podName")
    extra_prompt: str = Field(default="", alias="extraPrompt")

    @property
    def stable_selector(self) -> str:
        return self.stable_label or "role=stable"

    @property
    def canary_selector(self) -> str:
        return self.canary_label or "role=canary"

    @property
    def mode(self) -> AnalysisMode:
        return normalize_mode(self.analysis_mode)

    def model_or(self, default: str) -> str:
        return self.model or default
