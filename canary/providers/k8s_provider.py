"""Kubernetes API client for reading stable/canary pod logs (read-only)."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from canary.core.errors import LogFetchError, PodsNotFoundError

logger = logging.getLogger(__name__)

TEMPLATE_HASH_LABEL = "rollouts-pod-template-hash"

_core_v1_api = None
_config_loaded = False
_init_lock = threading.Lock()


@runtime_checkable
class LogFetcher(Protocol):
    def read_first_pod_logs(self, namespace: str, label_selector: str) -> str: ...

    def resolve_template_hash(self, namespace: str, template_hash: str) -> str: ...


class DefaultK8sLogFetcher:
    def read_first_pod_logs(self, namespace: str, label_selector: str) -> str:
        return read_first_pod_logs(namespace, label_selector)

    def resolve_template_hash(self, namespace: str, template_hash: str) -> str:
        return resolve_template_hash(namespace, template_hash)


def get_log_fetcher() -> LogFetcher:
    return DefaultK8sLogFetcher()


def _get_core_v1():
    """
    Return a cached CoreV1Api client.

    Config loading (in-cluster, then kubeconfig) and the API object are both cached;
    the kubernetes package is imported on first use.
    """
    global _core_v1_api, _config_loaded

    if _core_v1_api is not None:
        return _core_v1_api

    with _init_lock:
        if _core_v1_api is not None:
            return _core_v1_api

        from kubernetes import client, config

        if not _config_loaded:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()
            _config_loaded = True

        _core_v1_api = client.CoreV1Api()
        return _core_v1_api


def list_pod_names(namespace: str, label_selector: str, limit: Optional[int] = None) -> List[str]:
    try:
        v1 = _get_core_v1()
        kwargs: Dict[str, Any] = {"namespace": namespace, "label_selector": label_selector}
        if limit:
            kwargs["limit"] = limit
        pod_list = v1.list_namespaced_pod(**kwargs)
    except Exception as e:
        raise LogFetchError(f"failed to list pods for selector {label_selector} in namespace {namespace}: {e}") from e

    names: List[str] = []
    for pod in pod_list.items or []:
        name = getattr(getattr(pod, "metadata", None), "name", None)
        if name:
            names.append(name)
    return names


def read_first_pod_logs(namespace: str, label_selector: str) -> str:
    """
    Return the full log of the first pod matching `label_selector`.

    Raises:
        PodsNotFoundError: no pod matches
        LogFetchError: API failure
    """
    names = list_pod_names(namespace, label_selector)
    if not names:
        logger.error("No pods found for selector: namespace=%s label_selector=%s", namespace, label_selector)
        raise PodsNotFoundError(namespace, label_selector)

    pod_name = names[0]
    try:
        text = _get_core_v1().read_namespaced_pod_log(name=pod_name, namespace=namespace)
    except Exception as e:
        logger.error("Failed to fetch logs for pod: namespace=%s pod=%s", namespace, pod_name)
        raise LogFetchError(f"failed to fetch logs for pod {pod_name} in namespace {namespace}: {e}") from e
    return text or ""


def resolve_template_hash(namespace: str, template_hash: str) -> str:
    """Map a rollout pod-template hash to the name of one pod carrying it."""
    names = list_pod_names(namespace, f"{TEMPLATE_HASH_LABEL}={template_hash}", limit=1)
    if not names:
        raise LogFetchError(f"no pods found with template hash {template_hash}")
    logger.info("Resolved pod template hash to pod name: template_hash=%s pod=%s", template_hash, names[0])
    return names[0]
