"""Mode dispatch: direct model analysis or delegation to the diagnostic agent.

Delegated mode never falls back to direct mode. If the operator asked for the agent
and the agent cannot be used, the invocation fails.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Optional

from canary.core.errors import ConfigurationError
from canary.core.models import MODE_DELEGATED, AnalysisInput, AnalysisOutcome, normalize_mode
from canary.llm.analyzer import DirectModelAnalyzer
from canary.providers.delegate_provider import DelegateClient, split_logs

logger = logging.getLogger(__name__)


class ModeDispatcher:
    def __init__(self, analyzer: DirectModelAnalyzer, delegate_factory: Callable[[], DelegateClient]) -> None:
        self.analyzer = analyzer
        # Built lazily so direct-mode invocations never construct a delegate client.
        self._delegate_factory = delegate_factory

    def dispatch(
        self,
        mode: Optional[str],
        analysis_input: AnalysisInput,
        cancel: Optional[threading.Event] = None,
    ) -> AnalysisOutcome:
        selected = normalize_mode(mode)
        logger.info(
            "Analyzing with mode: mode=%s namespace=%s target=%s",
            selected,
            analysis_input.namespace,
            analysis_input.target,
        )
        if selected == MODE_DELEGATED:
            return self._delegate(analysis_input)
        return self.analyzer.analyze(analysis_input, cancel)

    def _delegate(self, analysis_input: AnalysisInput) -> AnalysisOutcome:
        if not analysis_input.namespace or not analysis_input.target:
            raise ConfigurationError("agent mode requires namespace and podName to be configured")

        client = self._delegate_factory()
        try:
            client.health_check()
        except Exception as e:
            logger.error("Diagnostic agent health check failed: %s", e)
            raise

        stable_logs, canary_logs = split_logs(analysis_input.log_context)
        resp = client.analyze(analysis_input.namespace, analysis_input.target, stable_logs, canary_logs)

        payload = {
            "text": resp.analysis,
            "promote": resp.promote,
            "confidence": resp.confidence,
            "rootCause": resp.root_cause,
            "remediation": resp.remediation,
        }
        if resp.pr_link:
            payload["prLink"] = resp.pr_link
            logger.info("Diagnostic agent created a change with a fix: pr_link=%s", resp.pr_link)

        logger.info(
            "Analysis completed via diagnostic agent: promote=%s confidence=%d", resp.promote, resp.confidence
        )
        return AnalysisOutcome(raw_text=json.dumps(payload), record=resp.to_record())
