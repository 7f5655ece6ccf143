"""Shared flowgraph configuration utilities.

Centralises reading of ~/.flowgraph/configuration.json so that the executor,
composite nodes and embedding applications share one implementation.

Example configuration file::

    {
        "executor": {"max_iterations": 250, "map_max_concurrency": 4, "log_level": "DEBUG"}
    }

Environment variables override the file: FLOWGRAPH_MAX_ITERATIONS,
FLOWGRAPH_MAP_CONCURRENCY. FLOWGRAPH_CONFIG points at an alternate file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100
DEFAULT_MAP_MAX_CONCURRENCY = 8

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWGRAPH_CONFIG_FILE = Path.home() / ".flowgraph" / "configuration.json"


def get_config_path() -> Path:
    override = os.environ.get("FLOWGRAPH_CONFIG")
    return Path(override) if override else FLOWGRAPH_CONFIG_FILE


def get_flowgraph_config() -> dict[str, Any]:
    """Load flowgraph configuration from ~/.flowgraph/configuration.json."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _int_setting(env_var: str, section: str, key: str, default: int) -> int:
    raw = os.environ.get(env_var)
    if raw is None:
        raw = get_flowgraph_config().get(section, {}).get(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {key}={raw!r}, using default {default}")
        return default
    if value < 1:
        logger.warning(f"{key} must be >= 1 (got {value}), using default {default}")
        return default
    return value


def get_max_iterations() -> int:
    """Return the global node-invocation budget per run."""
    return _int_setting(
        "FLOWGRAPH_MAX_ITERATIONS", "executor", "max_iterations", DEFAULT_MAX_ITERATIONS
    )


def get_map_max_concurrency() -> int:
    """Return the default element concurrency for map-reduce nodes."""
    return _int_setting(
        "FLOWGRAPH_MAP_CONCURRENCY",
        "executor",
        "map_max_concurrency",
        DEFAULT_MAP_MAX_CONCURRENCY,
    )


def get_log_level() -> str:
    return str(get_flowgraph_config().get("executor", {}).get("log_level", "INFO"))


def get_log_format() -> str:
    return str(get_flowgraph_config().get("executor", {}).get("log_format", "auto"))


# ---------------------------------------------------------------------------
# ExecutorConfig
# ---------------------------------------------------------------------------


@dataclass
class ExecutorConfig:
    """Executor defaults loaded from ~/.flowgraph/configuration.json and the environment."""

    max_iterations: int = field(default_factory=get_max_iterations)
    map_max_concurrency: int = field(default_factory=get_map_max_concurrency)
    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)


# ---------------------------------------------------------------------------
# LLM defaults
# ---------------------------------------------------------------------------

DEFAULT_MODEL = "gpt-4o-mini"


def get_preferred_model() -> str:
    """Return the preferred LiteLLM model string (e.g. 'anthropic/claude-sonnet-4-20250514')."""
    llm = get_flowgraph_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return llm.get("model") or DEFAULT_MODEL


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    api_key_env_var = get_flowgraph_config().get("llm", {}).get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None
