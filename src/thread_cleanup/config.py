"""Configuration loading for the Thread Cleanup bridge.

Layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable THREAD_CLEANUP_CONFIG
3. Fallback to "config/default.yaml"

Built-in defaults sit underneath whatever file is loaded, and environment
variables with prefix ``THREAD_CLEANUP__`` override both
(e.g., THREAD_CLEANUP__ANALYZER__MODEL=gpt-4o).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "THREAD_CLEANUP__"
ENV_PATH = "THREAD_CLEANUP_CONFIG"
DEFAULT_PATH = "config/default.yaml"

DEFAULTS: Dict[str, Any] = {
    "server": {"host": "127.0.0.1", "port": 8765, "cors_origins": ["*"]},
    "browser": {
        "attach": False,
        "cdp_url": "http://127.0.0.1:9222",
        "url_prefixes": ["https://chat.openai.com/", "https://chatgpt.com/"],
    },
    "analyzer": {
        "api_key": "",
        "base_url": "https://api.openai.com",
        "model": "gpt-4o-mini",
        "temperature": 0.3,
        "timeout": 60.0,
        "user_profile": "",
        "interests": "",
        "categories": "",
        "custom_prompt": "",
    },
    "history": {"path": "data/history.json", "max_entries": 50},
    "automation": {
        "locate_retry_delay": 0.5,
        "settle_delay": 0.35,
        "item_retry_delay": 0.25,
        "item_retries": 4,
        "indicator_interval": 1.0,
    },
    "logging": {"level": "INFO"},
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def _parse_scalar(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix THREAD_CLEANUP__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., THREAD_CLEANUP__HISTORY__MAX_ENTRIES -> cfg["history"]["max_entries"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _parse_scalar(value)
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the bridge.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``THREAD_CLEANUP_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file contents, environment overrides applied.
    """
    if path is None:
        path = os.environ.get(ENV_PATH, DEFAULT_PATH)

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("config file not found at %s; using defaults", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_merge(DEFAULTS, loaded))


def redact_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``cfg`` safe to show over HTTP."""
    out = copy.deepcopy(cfg)
    analyzer = out.get("analyzer")
    if isinstance(analyzer, dict) and analyzer.get("api_key"):
        analyzer["api_key"] = "***"
    return out
