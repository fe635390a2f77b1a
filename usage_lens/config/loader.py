"""
Configuration management and loading.

Handles the engine settings: display currency rate, bucketing timezone and
the scan root.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from usage_lens.storage.scanner import DEFAULT_ROOT, expand_root

DEFAULT_EXCHANGE_RATE = 150.0

# Setting names used by the desktop settings store
_ALIASES = {
    "exchangeRate": "exchange_rate",
    "customRootPath": "custom_root_path",
}


@dataclass(frozen=True)
class EngineConfig:
    """Settings the engine needs, passed explicitly into every component."""
    exchange_rate: float = DEFAULT_EXCHANGE_RATE
    timezone: Optional[str] = None  # None means the system zone
    custom_root_path: Optional[str] = None  # None means ~/.claude/projects

    def __post_init__(self):
        """Validate the rate and reject empty names."""
        if self.exchange_rate <= 0:
            raise ValueError("exchange_rate must be > 0")
        if self.timezone is not None and not self.timezone.strip():
            raise ValueError("timezone must not be empty")
        if self.custom_root_path is not None and not self.custom_root_path.strip():
            raise ValueError("custom_root_path must not be empty")

    @property
    def root_path(self) -> Path:
        """Effective scan root with ``~`` expanded."""
        return expand_root(self.custom_root_path or DEFAULT_ROOT)


def load_engine_config(path: str) -> EngineConfig:
    """Load and validate engine configuration from a YAML file.

    Unknown keys are rejected rather than ignored, so a typo cannot silently
    fall back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    return parse_engine_config(raw_config)


def parse_engine_config(data: Dict[str, Any]) -> EngineConfig:
    """Validate a decoded settings mapping.

    Raises:
        ValueError: If a key is unknown or a value has the wrong type
    """
    normalised = {_ALIASES.get(key, key): value for key, value in data.items()}

    allowed_keys = {'exchange_rate', 'timezone', 'custom_root_path'}
    unknown_keys = set(normalised.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown_keys)}")

    rate = normalised.get('exchange_rate', DEFAULT_EXCHANGE_RATE)
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
        raise ValueError("'exchange_rate' must be a number > 0")

    for key in ('timezone', 'custom_root_path'):
        value = normalised.get(key)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"'{key}' must be a string")

    return EngineConfig(
        exchange_rate=float(rate),
        timezone=normalised.get('timezone'),
        custom_root_path=normalised.get('custom_root_path'),
    )
