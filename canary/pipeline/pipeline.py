"""Measurement pipeline: one analysis request in, one measurement out.

Steps:
1. Parse the metric's plugin configuration and apply defaults.
2. Fetch stable and canary pod logs (a missing canary short-circuits to Successful).
3. Resolve the delegated target (a bare pod-template hash becomes a pod name).
4. Dispatch to direct or delegated analysis.
5. Resolve the verdict; on Fail, trigger remediation.

Every engine error becomes an Error-phase measurement; nothing is raised to the host.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from canary.core.config import EngineConfig
from canary.core.errors import ConfigurationError, PodsNotFoundError
from canary.core.models import (
    MODE_DELEGATED,
    AnalysisInput,
    Measurement,
    MetricConfig,
    Verdict,
    build_log_context,
)
from canary.llm.analyzer import DirectModelAnalyzer
from canary.llm.client import ModelCaller, get_model_caller
from canary.llm.retry import RetryController
from canary.pipeline.dispatch import ModeDispatcher
from canary.pipeline.verdict import DecisionResolver
from canary.providers.delegate_provider import DelegateClient, get_delegate_client
from canary.providers.github_provider import Remediator, get_remediator
from canary.providers.k8s_provider import LogFetcher, get_log_fetcher

logger = logging.getLogger(__name__)

PROVIDER_TYPE = "MetricAI"
PLUGIN_KEY = "argoproj-labs/metric-ai"

_PHASES = {"promote": "Successful", "fail": "Failed", "error": "Error"}


@dataclass
class Engine:
    config: EngineConfig
    dispatcher: ModeDispatcher
    resolver: DecisionResolver
    log_fetcher: LogFetcher


def build_engine(
    config: EngineConfig,
    *,
    caller: Optional[ModelCaller] = None,
    delegate_factory: Optional[Callable[[], DelegateClient]] = None,
    log_fetcher: Optional[LogFetcher] = None,
    remediator: Optional[Remediator] = None,
    retry: Optional[RetryController] = None,
) -> Engine:
    """Wire the engine from an already-loaded config. Unset collaborators get the real implementations."""
    analyzer = DirectModelAnalyzer(config, caller or get_model_caller(config), retry)
    dispatcher = ModeDispatcher(analyzer, delegate_factory or (lambda: get_delegate_client(config)))
    return Engine(
        config=config,
        dispatcher=dispatcher,
        resolver=DecisionResolver(remediator if remediator is not None else get_remediator(config)),
        log_fetcher=log_fetcher or get_log_fetcher(),
    )


def parse_metric_config(raw: Any) -> MetricConfig:
    """
    Accept the plugin block as a dict, JSON text/bytes, or None (all defaults).

    A whole `provider.plugin` map keyed by PLUGIN_KEY is unwrapped.
    """
    if raw is None:
        return MetricConfig()
    if isinstance(raw, MetricConfig):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        s = raw.strip()
        raw = json.loads(s) if s else {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"plugin configuration must be a JSON object, got {type(raw).__name__}")
    if isinstance(raw.get(PLUGIN_KEY), dict):
        raw = raw[PLUGIN_KEY]
    return MetricConfig.model_validate(raw)


def _finish(m: Measurement) -> Measurement:
    m.finished_at = datetime.now(timezone.utc)
    return m


def _error(started_at: datetime, err: BaseException) -> Measurement:
    return _finish(Measurement(phase="Error", message=str(err), started_at=started_at))


def measurement_from_verdict(verdict: Verdict, started_at: datetime) -> Measurement:
    return _finish(
        Measurement(
            phase=_PHASES[verdict.kind],  # type: ignore[arg-type]
            value=verdict.value,
            message=verdict.message,
            metadata=dict(verdict.metadata),
            started_at=started_at,
        )
    )


def run_measurement(
    engine: Engine,
    *,
    namespace: str,
    plugin_config: Any = None,
    cancel: Optional[threading.Event] = None,
) -> Measurement:
    started_at = datetime.now(timezone.utc)
    try:
        cfg = parse_metric_config(plugin_config)
    except Exception as e:
        logger.error("Failed to parse plugin configuration: %s", e)
        return _error(started_at, e)

    model = cfg.model_or(engine.config.default_model)
    mode = cfg.mode
    if mode == MODE_DELEGATED and (not cfg.namespace or not cfg.pod_name):
        err = ConfigurationError("agent mode requires namespace and podName to be configured")
        logger.error("Invalid agent mode configuration: %s", err)
        return _error(started_at, err)

    logger.info(
        "Fetching pod logs for analysis: namespace=%s stable_selector=%s canary_selector=%s model=%s",
        namespace,
        cfg.stable_selector,
        cfg.canary_selector,
        model,
    )
    try:
        stable_logs = engine.log_fetcher.read_first_pod_logs(namespace, cfg.stable_selector)
    except Exception as e:
        logger.error("Failed to fetch stable pod logs: %s", e)
        return _error(started_at, e)

    try:
        canary_logs = engine.log_fetcher.read_first_pod_logs(namespace, cfg.canary_selector)
    except PodsNotFoundError as e:
        logger.warning("Canary pods not found, marking as successful: %s", e)
        return _finish(Measurement(phase="Successful", value="1", started_at=started_at))
    except Exception as e:
        logger.error("Failed to fetch canary pod logs: %s", e)
        return _error(started_at, e)

    logger.info("Fetched pod logs: stable_len=%d canary_len=%d", len(stable_logs), len(canary_logs))

    target = cfg.pod_name
    if mode == MODE_DELEGATED and "-" not in target:
        # A bare value is a rollout pod-template hash, not a pod name.
        try:
            target = engine.log_fetcher.resolve_template_hash(cfg.namespace, target)
        except Exception as e:
            logger.error("Failed to resolve pod template hash %s: %s", target, e)
            return _error(started_at, e)

    analysis_input = AnalysisInput(
        model=model,
        log_context=build_log_context(stable_logs, canary_logs),
        extra_prompt=cfg.extra_prompt or None,
        namespace=cfg.namespace,
        target=target,
    )

    logger.info("Starting analysis: model=%s mode=%s", model, mode)
    try:
        outcome = engine.dispatcher.dispatch(mode, analysis_input, cancel)
    except Exception as e:
        logger.error("Analysis failed: %s", e)
        return measurement_from_verdict(engine.resolver.resolve_error(e), started_at)

    logger.info(
        "Analysis completed: promote=%s confidence=%d analysis_len=%d",
        outcome.record.promote,
        outcome.record.confidence,
        len(outcome.record.narrative),
    )
    verdict = engine.resolver.resolve(outcome.record, outcome.raw_text)
    if verdict.kind == "fail":
        engine.resolver.on_failure(analysis_input, outcome.record, repo_url=cfg.github_url, base_branch=cfg.base_branch)
    return measurement_from_verdict(verdict, started_at)


def get_metadata(plugin_config: Any = None) -> Dict[str, str]:
    metadata = {"provider": PROVIDER_TYPE}
    try:
        cfg = parse_metric_config(plugin_config)
    except Exception:
        return metadata
    if cfg.model:
        metadata["model"] = cfg.model
    if cfg.stable_label:
        metadata["stableLabel"] = cfg.stable_label
    if cfg.canary_label:
        metadata["canaryLabel"] = cfg.canary_label
    return metadata
