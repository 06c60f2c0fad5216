"""
Configuration management and loading.

Handles service settings read from a YAML file. Every section is
optional; omitted keys take their defaults, unknown keys are rejected.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from ai_reply_stream.core.models import MAX_MESSAGE_LENGTH, MIN_MESSAGE_LENGTH
from ai_reply_stream.core.pricing import PRICING_TABLE
from ai_reply_stream.storage.db import DEFAULT_DB_PATH

SUPPORTED_PROVIDERS = ("openai", "scripted")


@dataclass(frozen=True)
class ProviderConfig:
    """Generation provider settings."""
    name: str = "openai"
    model: str = "gpt-4"
    max_tokens: int = 500
    base_temperature: float = 0.7

    def __post_init__(self):
        """Validate provider values."""
        if self.name not in SUPPORTED_PROVIDERS:
            raise ValueError(f"provider.name must be one of: {list(SUPPORTED_PROVIDERS)}")
        if self.model not in PRICING_TABLE.prices:
            raise ValueError(f"provider.model must be one of: {sorted(PRICING_TABLE.prices)}")
        if self.max_tokens <= 0:
            raise ValueError("provider.max_tokens must be > 0")
        if not 0 <= self.base_temperature <= 2:
            raise ValueError("provider.base_temperature must be between 0 and 2")


@dataclass(frozen=True)
class GenerationConfig:
    """Per-request generation settings."""
    variant_count: int = 3
    max_in_flight_frames: int = 8
    min_message_length: int = MIN_MESSAGE_LENGTH
    max_message_length: int = MAX_MESSAGE_LENGTH

    def __post_init__(self):
        """Validate generation values."""
        if self.variant_count <= 0:
            raise ValueError("generation.variant_count must be > 0")
        if self.max_in_flight_frames <= 0:
            raise ValueError("generation.max_in_flight_frames must be > 0")
        if self.min_message_length < 1:
            raise ValueError("generation.min_message_length must be >= 1")
        if self.max_message_length < self.min_message_length:
            raise ValueError("generation.max_message_length must be >= min_message_length")


@dataclass(frozen=True)
class QuotaConfig:
    """Quota defaults applied to newly created accounts."""
    default_monthly_allowance: int = 10

    def __post_init__(self):
        if self.default_monthly_allowance < 0:
            raise ValueError("quota.default_monthly_allowance must be >= 0")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path or not str(self.db_path).strip():
            raise ValueError("storage.db_path cannot be empty")


@dataclass(frozen=True)
class ServiceConfig:
    """Complete service configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def default_config() -> ServiceConfig:
    """Configuration with every default applied."""
    return ServiceConfig()


_SECTION_FIELDS = {
    "provider": {
        "name": str,
        "model": str,
        "max_tokens": int,
        "base_temperature": (int, float),
    },
    "generation": {
        "variant_count": int,
        "max_in_flight_frames": int,
        "min_message_length": int,
        "max_message_length": int,
    },
    "quota": {
        "default_monthly_allowance": int,
    },
    "storage": {
        "db_path": str,
    },
}

_SECTION_TYPES = {
    "provider": ProviderConfig,
    "generation": GenerationConfig,
    "quota": QuotaConfig,
    "storage": StorageConfig,
}


def load_service_config(path: str) -> ServiceConfig:
    """Load and validate service configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ServiceConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Service config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_FIELDS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for section, data in raw_config.items():
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ValueError(f"'{section}' must be a dictionary")
        sections[section] = _parse_section(section, data)

    return ServiceConfig(**sections)


def _parse_section(section: str, data: Dict[str, Any]):
    """Parse and validate one configuration section.

    Args:
        section: Section name, used in error messages
        data: Raw section data

    Returns:
        The section's config dataclass

    Raises:
        ValueError: If a key is unknown or a value has the wrong type
    """
    fields = _SECTION_FIELDS[section]
    unknown_keys = set(data.keys()) - set(fields)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {section}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        expected = fields[key]
        # bool is an int subclass; reject it for numeric settings
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"'{key}' in {section} has an invalid type")
        values[key] = float(value) if expected == (int, float) else value

    return _SECTION_TYPES[section](**values)
