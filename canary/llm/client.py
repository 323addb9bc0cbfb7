"""
Model caller for the direct analysis mode.

Goals:
- One small seam (`ModelCaller`) between the analyzer and the Gemini SDK.
- Exactly one upstream request per `generate` call; retries belong to the caller.
- SDK errors propagate untouched so the retry controller can read their status/details.

Config (see `canary.core.config`):
- google_api_key: Gemini API key (required unless LLM_MOCK=1)
- LLM_MOCK=1: return a deterministic stub (no external calls)
"""

from __future__ import annotations

import json
import logging
from types import SimpleNamespace
from typing import Any, Optional, Protocol, Sequence

from canary.core.config import EngineConfig
from canary.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ModelCaller(Protocol):
    def generate(self, model: str, parts: Sequence[str]) -> Any:
        """
        Send one request made of ordered text parts.

        Returns an object shaped like `GenerateContentResponse`:
        `.candidates[i].content.parts[j].text`.
        """
        ...


def concat_candidates(resp: Any) -> str:
    """Concatenate every non-empty text part of every candidate, in order, no separators."""
    if resp is None:
        return ""
    out = []
    for cand in getattr(resp, "candidates", None) or []:
        content = getattr(cand, "content", None)
        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            if text:
                out.append(text)
    return "".join(out)


class GeminiModelCaller:
    """Gemini API (API-key backend) through the google-genai SDK."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ConfigurationError("google API key is required for direct analysis")
        self._api_key = api_key
        self._client: Optional[Any] = None

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def generate(self, model: str, parts: Sequence[str]) -> Any:
        from google.genai import types

        client = self._get_client()
        contents = [types.Content(role="user", parts=[types.Part(text=p) for p in parts])]
        return client.models.generate_content(model=model, contents=contents)


def _mock_payload() -> dict:
    # Stable stub used when LLM_MOCK=1: follows the default-to-promote policy.
    return {
        "text": "LLM_MOCK enabled: no external call was made.",
        "promote": True,
        "confidence": 0,
    }


class MockModelCaller:
    def __init__(self, payload: Optional[dict] = None) -> None:
        self._payload = payload or _mock_payload()
        self.calls = 0

    def generate(self, model: str, parts: Sequence[str]) -> Any:
        self.calls += 1
        part = SimpleNamespace(text=json.dumps(self._payload))
        return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


def get_model_caller(cfg: EngineConfig) -> ModelCaller:
    if cfg.llm_mock:
        logger.info("LLM_MOCK enabled; model calls are stubbed")
        return MockModelCaller()
    return GeminiModelCaller(cfg.google_api_key or "")
