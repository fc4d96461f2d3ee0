"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Layers, later overriding earlier:
#
#   1. Settings defaults    - hnrank/config/settings.py
#   2. config/config.yaml   - checked-in defaults for a deployment
#   3. .env / environment   - only the values actually set there
#
# The result is a nested dict:
#
#   {"provider":  {"name", "openai": {...}, "heuristic": {...}},
#    "store":     {"capacity"},
#    "scheduler": {"interval_seconds", "max_concurrent_jobs",
#                  "freshness_seconds", "run_on_start"},
#    "logging":   {"level", "env"}}
#
# Secrets (the API key) stay on Settings and never enter this dict.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import yaml

from hnrank.config.settings import Settings

# Settings field → path inside the nested config dict.
_FIELD_PATHS: dict[str, tuple[str, ...]] = {
    "score_provider": ("provider", "name"),
    "openai_model": ("provider", "openai", "model"),
    "openai_base_url": ("provider", "openai", "base_url"),
    "openai_timeout_seconds": ("provider", "openai", "timeout_seconds"),
    "openai_max_retries": ("provider", "openai", "max_retries"),
    "openai_retry_delay_seconds": ("provider", "openai", "retry_delay_seconds"),
    "heuristic_latency_seconds": ("provider", "heuristic", "latency_seconds"),
    "ranking_history_limit": ("store", "capacity"),
    "rescore_interval_seconds": ("scheduler", "interval_seconds"),
    "rescore_max_concurrent_jobs": ("scheduler", "max_concurrent_jobs"),
    "insight_freshness_seconds": ("scheduler", "freshness_seconds"),
    "rescore_run_on_start": ("scheduler", "run_on_start"),
    "log_level": ("logging", "level"),
    "app_env": ("logging", "env"),
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config layered between Settings defaults and the environment.

    Args:
        path: Path to the YAML configuration file.  A missing file is fine.
        settings: Pre-built Settings; a fresh one is read from the
                  environment when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()

    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    config = _settings_to_config(settings, fields=_FIELD_PATHS.keys())
    _deep_merge(config, yaml_config)
    # model_fields_set holds the fields that came from .env / environment.
    explicit = _FIELD_PATHS.keys() & settings.model_fields_set
    _deep_merge(config, _settings_to_config(settings, fields=explicit))
    return config


def _settings_to_config(settings: Settings, fields: Any) -> dict:
    """Project the named Settings fields onto the nested config layout."""
    config: dict = {}
    for field in fields:
        *parents, leaf = _FIELD_PATHS[field]
        node = config
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = getattr(settings, field)
    return config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
