"""Verdict resolution: decision record -> externally visible verdict (+ failure remediation).

Score mapping is intentionally asymmetric:
- promote: score = confidence / 100, reported with two decimals ("1.00", "0.85")
- fail:    score = 0, reported as "0"; confidence only survives in metadata
"""

from __future__ import annotations

import logging
from typing import Optional

from canary.core.models import AnalysisInput, DecisionRecord, Verdict
from canary.providers.github_provider import Remediator

logger = logging.getLogger(__name__)


def _metadata(record: DecisionRecord, raw_text: str) -> dict:
    return {
        "analysis": record.narrative,
        "analysisJSON": raw_text,
        "confidence": str(record.confidence),
    }


class DecisionResolver:
    def __init__(self, remediator: Optional[Remediator] = None) -> None:
        self.remediator = remediator

    def resolve(self, record: DecisionRecord, raw_text: str = "") -> Verdict:
        if record.promote:
            score = round(record.confidence / 100.0, 2)
            logger.info("Canary promotion recommended: confidence=%d", record.confidence)
            return Verdict(kind="promote", score=score, value=f"{score:.2f}", metadata=_metadata(record, raw_text))

        logger.info("Canary promotion not recommended: confidence=%d", record.confidence)
        return Verdict(kind="fail", score=0.0, value="0", metadata=_metadata(record, raw_text))

    @staticmethod
    def resolve_error(err: BaseException) -> Verdict:
        return Verdict(kind="error", message=str(err))

    def on_failure(
        self,
        analysis_input: AnalysisInput,
        record: DecisionRecord,
        *,
        repo_url: str,
        base_branch: str,
    ) -> None:
        """
        Trigger remediation for a failed canary. Fire-and-forget: errors are logged and
        never change the verdict already computed.
        """
        if self.remediator is None:
            logger.warning("Canary failed but no remediation provider is configured")
            return
        try:
            url = self.remediator.remediate(
                log_context=analysis_input.log_context,
                narrative=record.narrative,
                repo_url=repo_url,
                base_branch=base_branch,
                model=analysis_input.model,
            )
        except Exception as e:
            logger.warning("Failed to run failure remediation: %s", e)
            return
        if url:
            logger.info("Failure remediation opened: url=%s", url)
