"""LedgerRun settings.

Settings come from three layers, later ones winning:

1. ``DEFAULTS`` below
2. the YAML file (``config/ledgerrun.yaml`` unless ``--config`` is given)
3. ``LEDGERRUN_*`` environment variables, including ones set in ``.env``
"""

import copy
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from ledgerrun.utils.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "ledgerrun.yaml"

DEFAULTS: dict[str, Any] = {
    "runs": {"dir": "./runs", "granularity": "daily"},
    "allocation": {"round_to_usd": 0.01, "noop_if_within_band": False},
    "guardrails": {
        "enforce": True,
        "max_position_pct": 0.5,
        "daily_spend_limit": 10000.0,
        "large_order_threshold": 0.1,
    },
    "logging": {"level": "INFO", "format": None, "file": None, "event_log_dir": "./logs"},
}

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "LEDGERRUN_RUNS_DIR": "runs.dir",
    "LEDGERRUN_GRANULARITY": "runs.granularity",
    "LEDGERRUN_LOG_LEVEL": "logging.level",
    "LEDGERRUN_EVENT_LOG_DIR": "logging.event_log_dir",
}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated with ``override``, merging nested mappings."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Config:
    """Dotted-key view over nested settings.

    Example:
        >>> config = Config({"runs": {"dir": "./runs"}})
        >>> config.get("runs.dir")
        './runs'
        >>> config.get("guardrails.enforce", True)
        True
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Read a YAML file and lay it over ``DEFAULTS``.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file is not valid YAML or its root is not a mapping
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {filepath}: {e}") from e

        loaded = loaded or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping, got {type(loaded).__name__}"
            )
        return cls(deep_merge(DEFAULTS, loaded))

    def get(self, key: str, default: Any = None) -> Any:
        """Look up ``"section.name"``; missing or null values give ``default``."""
        value: Any = self._config
        for part in key.split("."):
            if not isinstance(value, dict) or value.get(part) is None:
                return default
            value = value[part]
        return value

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def set(self, key: str, value: Any) -> None:
        """Set ``"section.name"``, creating intermediate sections."""
        *parents, leaf = key.split(".")
        node = self._config
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def section(self, key: str) -> dict[str, Any]:
        """Copy of a nested mapping, or an empty dict if absent."""
        value = self.get(key, {})
        if not isinstance(value, dict):
            raise ConfigurationError(f"Configuration section '{key}' must be a mapping")
        return dict(value)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._config)


def apply_env_overrides(config: Config) -> Config:
    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            config.set(key, value)
    return config


def load_config(filepath: str | Path | None = None, env_file: str = ".env") -> Config:
    """Load settings for a CLI or scheduled run.

    Args:
        filepath: YAML file (default: config/ledgerrun.yaml in the project)
        env_file: dotenv file read before applying LEDGERRUN_* overrides

    Raises:
        FileNotFoundError: If the YAML file does not exist
        ConfigurationError: If the YAML file is malformed
    """
    load_dotenv(env_file)
    return apply_env_overrides(Config.from_file(filepath or DEFAULT_CONFIG_PATH))
