"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for service configs.
"""

import os
import tempfile

import pytest
import yaml

from ai_reply_stream.config.loader import (
    GenerationConfig,
    ProviderConfig,
    QuotaConfig,
    ServiceConfig,
    default_config,
    load_service_config,
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
            yaml.dump(config_data, f)
        return config_path

    def test_load_valid_config(self):
        """Test loading a valid configuration."""
        config_path = self._write_config({
            "provider": {"name": "scripted", "model": "gpt-4o-mini", "base_temperature": 1},
            "generation": {"variant_count": 2, "max_in_flight_frames": 4},
            "quota": {"default_monthly_allowance": 50},
            "storage": {"db_path": "/tmp/replies.db"},
        })

        config = load_service_config(config_path)

        assert isinstance(config, ServiceConfig)
        assert config.provider.name == "scripted"
        assert config.provider.model == "gpt-4o-mini"
        assert config.provider.base_temperature == 1.0
        assert isinstance(config.provider.base_temperature, float)
        assert config.generation.variant_count == 2
        assert config.generation.max_in_flight_frames == 4
        assert config.generation.min_message_length == 10
        assert config.quota.default_monthly_allowance == 50
        assert config.storage.db_path == "/tmp/replies.db"

    def test_omitted_sections_take_defaults(self):
        config_path = self._write_config({"quota": {"default_monthly_allowance": 3}})

        config = load_service_config(config_path)

        assert config.provider == ProviderConfig()
        assert config.generation == GenerationConfig()
        assert config.quota == QuotaConfig(default_monthly_allowance=3)

    def test_empty_file_returns_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")

        assert load_service_config(config_path) == default_config()

    def test_missing_file(self):
        """Test handling of missing config file."""
        with pytest.raises(FileNotFoundError):
            load_service_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_invalid_yaml(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("provider: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_service_config(config_path)

    def test_top_level_must_be_mapping(self):
        config_path = self._write_config(["provider"])

        with pytest.raises(ValueError, match="must be a dictionary"):
            load_service_config(config_path)

    def test_unknown_top_level_key(self):
        """Test rejection of unknown configuration keys."""
        config_path = self._write_config({"providers": {}})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_service_config(config_path)

    def test_unknown_section_key(self):
        config_path = self._write_config({"generation": {"variants": 3}})

        with pytest.raises(ValueError, match="Unknown keys in generation"):
            load_service_config(config_path)

    def test_wrong_value_type(self):
        config_path = self._write_config({"generation": {"variant_count": "three"}})

        with pytest.raises(ValueError, match="'variant_count' in generation has an invalid type"):
            load_service_config(config_path)

    def test_bool_rejected_for_numeric_setting(self):
        config_path = self._write_config({"provider": {"max_tokens": True}})

        with pytest.raises(ValueError, match="invalid type"):
            load_service_config(config_path)

    def test_section_must_be_mapping(self):
        config_path = self._write_config({"quota": 10})

        with pytest.raises(ValueError, match="'quota' must be a dictionary"):
            load_service_config(config_path)


class TestConfigValidation:
    """Test value validation on the config dataclasses."""

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="provider.name"):
            ProviderConfig(name="anthropic")

    def test_model_must_be_priced(self):
        with pytest.raises(ValueError, match="provider.model"):
            ProviderConfig(model="unknown-model")

    def test_temperature_range(self):
        with pytest.raises(ValueError, match="base_temperature"):
            ProviderConfig(base_temperature=2.5)

    def test_variant_count_positive(self):
        with pytest.raises(ValueError, match="variant_count must be > 0"):
            GenerationConfig(variant_count=0)

    def test_in_flight_frames_positive(self):
        with pytest.raises(ValueError, match="max_in_flight_frames"):
            GenerationConfig(max_in_flight_frames=0)

    def test_message_length_bounds(self):
        with pytest.raises(ValueError, match="max_message_length"):
            GenerationConfig(min_message_length=50, max_message_length=20)

    def test_negative_allowance(self):
        with pytest.raises(ValueError, match="default_monthly_allowance"):
            QuotaConfig(default_monthly_allowance=-1)
