"""Unit tests for configuration management."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from ledgerrun.utils.config import DEFAULTS, Config, deep_merge, load_config
from ledgerrun.utils.exceptions import ConfigurationError


class TestConfig:
    """Test cases for Config class."""

    def test_from_file_valid_yaml(self, tmp_path: Path) -> None:
        """Test loading valid YAML configuration file."""
        config_file = tmp_path / "test_config.yaml"
        config_data = {
            "runs": {"dir": "./runs", "granularity": "hourly"},
            "logging": {"level": "DEBUG"},
        }
        config_file.write_text(yaml.dump(config_data))

        config = Config.from_file(config_file)
        assert config.get("runs.granularity") == "hourly"
        assert config.get("logging.level") == "DEBUG"

    def test_from_file_empty_yaml(self, tmp_path: Path) -> None:
        """Test an empty file gives the defaults."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = Config.from_file(config_file)
        assert config.to_dict() == DEFAULTS

    def test_from_file_merges_defaults(self, tmp_path: Path) -> None:
        """Test file values override defaults key by key."""
        config_file = tmp_path / "partial.yaml"
        config_file.write_text("guardrails:\n  max_position_pct: 0.8\n")

        config = Config.from_file(config_file)

        assert config.get("guardrails.max_position_pct") == 0.8
        assert config.get("guardrails.daily_spend_limit") == 10000.0
        assert config.get("runs.granularity") == "daily"

    def test_from_file_not_found(self) -> None:
        """Test loading non-existent file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            Config.from_file("nonexistent.yaml")

    def test_from_file_invalid_yaml(self, tmp_path: Path) -> None:
        """Test malformed YAML raises ConfigurationError."""
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("runs: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            Config.from_file(config_file)

    def test_from_file_non_mapping(self, tmp_path: Path) -> None:
        """Test a YAML list at the root is rejected."""
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            Config.from_file(config_file)

    def test_get_nested_key(self) -> None:
        """Test getting nested configuration values."""
        config = Config({"guardrails": {"max_position_pct": 0.5}})

        assert config.get("guardrails.max_position_pct") == 0.5
        assert config.get("guardrails.missing", "fallback") == "fallback"
        assert config.get("runs.dir.deeper") is None

    def test_getitem(self) -> None:
        """Test bracket access raises KeyError for missing keys."""
        config = Config({"runs": {"dir": "./runs"}})

        assert config["runs.dir"] == "./runs"
        with pytest.raises(KeyError, match="Configuration key not found"):
            config["runs.granularity"]

    def test_section(self) -> None:
        """Test sections are returned as dict copies."""
        config = Config({"allocation": {"round_to_usd": 1.0}, "runs": "oops"})

        section = config.section("allocation")
        section["round_to_usd"] = 5.0

        assert config.get("allocation.round_to_usd") == 1.0
        assert config.section("missing") == {}
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            config.section("runs")

    def test_set_creates_sections(self) -> None:
        """Test set walks and creates nested sections."""
        config = Config({"runs": "flat"})

        config.set("runs.dir", "/data/runs")
        config.set("logging.level", "DEBUG")

        assert config.get("runs.dir") == "/data/runs"
        assert config.get("logging.level") == "DEBUG"

    def test_to_dict_is_a_copy(self) -> None:
        """Test callers cannot mutate the config through to_dict."""
        config = Config({"runs": {"dir": "./runs"}})

        config.to_dict()["runs"]["dir"] = "elsewhere"

        assert config.get("runs.dir") == "./runs"


class TestDeepMerge:
    """Test cases for deep_merge."""

    def test_nested_merge(self) -> None:
        """Test nested mappings merge and scalars replace."""
        base = {"a": {"x": 1, "y": 2}, "b": 1}

        merged = deep_merge(base, {"a": {"y": 3}, "b": {"z": 4}})

        assert merged == {"a": {"x": 1, "y": 3}, "b": {"z": 4}}
        assert base == {"a": {"x": 1, "y": 2}, "b": 1}


class TestLoadConfig:
    """Test cases for load_config."""

    def test_load_project_config(self) -> None:
        """Test the shipped configuration loads."""
        config = load_config()

        assert config.get("runs.granularity") == "daily"
        assert config.get("guardrails.enforce") is True
        assert config.get("scheduler.timezone") == "US/Eastern"

    def test_load_explicit_path(self, tmp_path: Path) -> None:
        """Test an explicit path is used."""
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("runs:\n  dir: /tmp/runs\n")

        assert load_config(config_file).get("runs.dir") == "/tmp/runs"

    @patch("ledgerrun.utils.config.load_dotenv")
    @patch.dict(
        os.environ,
        {"LEDGERRUN_RUNS_DIR": "/srv/runs", "LEDGERRUN_LOG_LEVEL": "DEBUG"},
        clear=True,
    )
    def test_env_overrides(self, mock_load_dotenv, tmp_path: Path) -> None:
        """Test LEDGERRUN_* variables override file values."""
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("runs:\n  dir: ./runs\n")

        config = load_config(config_file, env_file="test.env")

        assert config.get("runs.dir") == "/srv/runs"
        assert config.get("logging.level") == "DEBUG"
        assert config.get("runs.granularity") == "daily"
        mock_load_dotenv.assert_called_once_with("test.env")
