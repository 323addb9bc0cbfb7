"""Direct analysis: one prompt, one model response, one decision record."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

from pydantic import ValidationError

from canary.core.config import EngineConfig
from canary.core.models import CANARY_MARKER, STABLE_MARKER, AnalysisInput, AnalysisOutcome, DecisionRecord, ModelDecision
from canary.llm.client import ModelCaller, concat_candidates
from canary.llm.extract import extract_first_object
from canary.llm.retry import RetryController

logger = logging.getLogger(__name__)


def build_prompt(extra_prompt: Optional[str] = None) -> str:
    prompt = (
        "You are reviewing a canary deployment.\n"
        "Compare the behavior of the stable version against the canary version using ONLY the logs below.\n"
        f"Stable version logs start after '{STABLE_MARKER}' and canary version logs start after '{CANARY_MARKER}'.\n"
        "\n"
        "Output format constraints:\n"
        "- Return ONLY a JSON object (no markdown, no code fences, no extra text).\n"
        "- The object must have exactly these keys:\n"
        "  - text: string, your analysis\n"
        "  - promote: boolean, true to promote the canary, false to fail it\n"
        "  - confidence: integer from 0 to 100, your confidence in the decision\n"
        "\n"
        "If the logs do not contain enough information to make a determination, default to promote: true."
    )
    if extra_prompt:
        prompt += "\n\nAdditional context: " + extra_prompt
    return prompt


def parse_decision(text: str) -> Optional[DecisionRecord]:
    """Strict parse of a model JSON object into a DecisionRecord; None on any failure.

    Only `text`, `promote` and `confidence` are read; delegated-only fields stay unset.
    """
    try:
        obj: Any = json.loads(text)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    try:
        return ModelDecision.model_validate(obj).to_record()
    except ValidationError:
        return None


class DirectModelAnalyzer:
    def __init__(self, config: EngineConfig, caller: ModelCaller, retry: Optional[RetryController] = None) -> None:
        self.config = config
        self.caller = caller
        self.retry = retry or RetryController()

    def analyze(self, analysis_input: AnalysisInput, cancel: Optional[threading.Event] = None) -> AnalysisOutcome:
        """
        Run the direct analysis.

        Upstream failures raise (see RetryController.execute). Output that cannot be
        structured is NOT an error: it yields a zero-value DecisionRecord paired with the
        raw model text, and callers apply their own defaulting.
        """
        model = analysis_input.model or self.config.default_model
        parts = [build_prompt(analysis_input.extra_prompt) + "\n\n" + analysis_input.log_context]

        resp = self.retry.execute(lambda: self.caller.generate(model, parts), self.config.max_attempts, cancel)
        raw_text = concat_candidates(resp).strip()

        record = parse_decision(raw_text)
        if record is not None:
            return AnalysisOutcome(raw_text=raw_text, record=record)

        extracted = extract_first_object(raw_text)
        if extracted:
            record = parse_decision(extracted)
            if record is not None:
                logger.debug("Recovered decision object from surrounding text: raw_len=%d", len(raw_text))
                return AnalysisOutcome(raw_text=extracted, record=record)

        logger.warning("Model output could not be parsed into a decision record: model=%s raw_len=%d", model, len(raw_text))
        return AnalysisOutcome(raw_text=raw_text, record=DecisionRecord())
