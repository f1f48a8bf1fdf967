"""
Unit tests for configuration loading and validation.

Tests strict validation and precedence of file, environment and overrides.
"""

import os
import tempfile

import pytest
import yaml

from doc_migrator.config.loader import (
    DEFAULT_MODEL,
    MigratorConfig,
    load_api_key,
    load_config,
    load_config_file,
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

    def _write_config(self, config_data, filename: str = "doc-migrator.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_defaults(self):
        config = load_config(env={})
        assert config == MigratorConfig()
        assert config.api_tier == "build1"
        assert config.model == DEFAULT_MODEL
        assert config.max_cost == 50.0
        assert config.workers == 3
        assert config.stop_on_error is False

    def test_valid_config_loads_correctly(self):
        path = self._write_config({
            "api_tier": "build2",
            "model": "claude-sonnet-4-5-20250929",
            "max_cost": 10,
            "workers": 5,
            "stop_on_error": True,
        })
        config = load_config(path, env={})

        assert config.api_tier == "build2"
        assert config.model == "claude-sonnet-4-5-20250929"
        assert config.max_cost == 10.0
        assert isinstance(config.max_cost, float)
        assert config.workers == 5
        assert config.stop_on_error is True

    def test_missing_file_raises_error(self):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config_file(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml_raises_error(self):
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("workers: [1, 2\n")
        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_config_file(path)

    def test_empty_file_gives_defaults(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()
        assert load_config(path, env={}) == MigratorConfig()

    def test_unknown_keys_rejected(self):
        path = self._write_config({"workers": 2, "turbo": True})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config_file(path)

    def test_wrong_types_rejected(self):
        with pytest.raises(ValueError, match="'workers' has invalid type str"):
            load_config_file(self._write_config({"workers": "four"}))
        with pytest.raises(ValueError, match="'max_cost' has invalid type bool"):
            load_config_file(self._write_config({"max_cost": True}))

    def test_non_mapping_rejected(self):
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config_file(self._write_config(["workers", 2]))

    def test_environment_overrides_file(self):
        path = self._write_config({"workers": 2, "max_cost": 10.0})
        config = load_config(path, env={
            "DOC_MIGRATOR_WORKERS": "6",
            "DOC_MIGRATOR_MAX_COST": "12.5",
            "DOC_MIGRATOR_API_TIER": "free",
            "DOC_MIGRATOR_AVG_OUTPUT_TOKENS": "700",
        })
        assert config.workers == 6
        assert config.max_cost == 12.5
        assert config.api_tier == "free"
        assert config.avg_output_tokens_per_doc == 700

    def test_invalid_environment_value(self):
        with pytest.raises(ValueError, match="Invalid value for DOC_MIGRATOR_WORKERS"):
            load_config(env={"DOC_MIGRATOR_WORKERS": "lots"})

    def test_overrides_win_and_none_is_ignored(self):
        config = load_config(
            env={"DOC_MIGRATOR_MODEL": "claude-opus-4-5-20251101"},
            overrides={"model": None, "workers": 8},
        )
        assert config.model == "claude-opus-4-5-20251101"
        assert config.workers == 8

    def test_unknown_override_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration key: speed"):
            load_config(env={}, overrides={"speed": 1})

    def test_no_budget(self):
        assert load_config(env={}, no_budget=True).max_cost is None

    @pytest.mark.parametrize("settings,message", [
        ({"max_cost": 0}, "max_cost must be > 0"),
        ({"max_cost": -5.0}, "max_cost must be > 0"),
        ({"workers": 0}, "workers must be >= 1"),
        ({"api_tier": "gold"}, "Unsupported tier: gold"),
        ({"model": " "}, "model cannot be empty"),
    ])
    def test_invalid_values(self, settings, message):
        with pytest.raises(ValueError, match=message):
            load_config(self._write_config(settings), env={})


class TestApiKey:
    """Test API key loading."""

    def test_valid_key(self):
        assert load_api_key({"ANTHROPIC_API_KEY": "sk-ant-test-123"}) == "sk-ant-test-123"

    def test_missing_key(self):
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY is not set"):
            load_api_key({})

    def test_malformed_key(self):
        with pytest.raises(ValueError, match="must start with 'sk-ant-'"):
            load_api_key({"ANTHROPIC_API_KEY": "sk-openai-123"})
