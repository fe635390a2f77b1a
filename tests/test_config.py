"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for engine settings.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from usage_lens.config.loader import (
    DEFAULT_EXCHANGE_RATE,
    EngineConfig,
    load_engine_config,
    parse_engine_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            if isinstance(config_data, str):
                f.write(config_data)
            else:
                yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        path = self._write_config({
            "exchange_rate": 151.5,
            "timezone": "Asia/Tokyo",
            "custom_root_path": "/var/logs/usage",
        })

        config = load_engine_config(path)

        assert config.exchange_rate == 151.5
        assert config.timezone == "Asia/Tokyo"
        assert config.root_path == Path("/var/logs/usage")

    def test_camel_case_aliases(self):
        """Test the settings-store key names are accepted."""
        path = self._write_config({"exchangeRate": 100, "customRootPath": "/logs"})

        config = load_engine_config(path)

        assert config.exchange_rate == 100.0
        assert config.custom_root_path == "/logs"

    def test_defaults(self):
        """Test omitted keys fall back to defaults."""
        config = load_engine_config(self._write_config({"timezone": "UTC"}))
        assert config.exchange_rate == DEFAULT_EXCHANGE_RATE
        assert config.custom_root_path is None

    def test_default_root_is_expanded(self):
        """Test the default root is ~/.claude/projects with ~ expanded."""
        with patch.dict(os.environ, {"HOME": self.temp_dir}):
            assert EngineConfig().root_path == Path(self.temp_dir) / ".claude" / "projects"

    def test_missing_file(self):
        """Test missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_engine_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        """Test malformed YAML raises YAMLError naming the file."""
        path = self._write_config("exchange_rate: [1, 2\n")
        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_engine_config(path)

    def test_empty_file(self):
        """Test empty config raises ValueError."""
        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_engine_config(self._write_config(""))

    def test_non_mapping(self):
        """Test a YAML list is rejected."""
        with pytest.raises(ValueError, match="must be a mapping"):
            load_engine_config(self._write_config("- 1\n- 2\n"))

    def test_unknown_keys_rejected(self):
        """Test unknown keys are rejected rather than ignored."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_engine_config(self._write_config({"exchange_rate": 1.0, "theme": "dark"}))

    @pytest.mark.parametrize("rate", [0, -5, "150", True])
    def test_invalid_exchange_rate(self, rate):
        """Test exchange rate must be a positive number."""
        with pytest.raises(ValueError, match="exchange_rate"):
            parse_engine_config({"exchange_rate": rate})

    def test_non_string_timezone(self):
        """Test timezone must be a string."""
        with pytest.raises(ValueError, match="'timezone' must be a string"):
            parse_engine_config({"timezone": 9})


class TestEngineConfig:
    """Test dataclass validation."""

    def test_rejects_non_positive_rate(self):
        """Test the rate invariant."""
        with pytest.raises(ValueError):
            EngineConfig(exchange_rate=0)

    def test_rejects_empty_names(self):
        """Test empty strings are not valid zone or root."""
        with pytest.raises(ValueError):
            EngineConfig(timezone=" ")
        with pytest.raises(ValueError):
            EngineConfig(custom_root_path="")
