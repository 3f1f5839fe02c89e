"""
Unit tests for configuration loading and validation.

Tests strict YAML validation and environment overrides for gateway configs.
"""

import os
import tempfile

import pytest
import yaml

from usage_gateway.config.loader import (
    DEFAULT_DB_PATH,
    DEFAULT_USAGE_ENDPOINT,
    CollectionDefaults,
    GatewayConfig,
    load_gateway_config,
    load_gateway_config_from_env,
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

    def _write_config(self, config_data, filename: str = "gateway.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_path = self._write_config({
            "database": {"path": "/tmp/gateway.db"},
            "upstream": {"usage_endpoint": "http://localhost:9000/usage"},
            "defaults": {
                "tenant": "acme",
                "metrics": ["interactions", "unique_users"],
                "limit": 25,
                "timezone": "Europe/Berlin",
                "environment_id": "production",
            },
            "logging": {"level": "debug", "json": True},
        })

        config = load_gateway_config(config_path)

        assert config.database.path == "/tmp/gateway.db"
        assert config.upstream.usage_endpoint == "http://localhost:9000/usage"
        assert config.defaults.tenant == "acme"
        assert config.defaults.metrics == ("interactions", "unique_users")
        assert config.defaults.limit == 25
        assert config.defaults.timezone == "Europe/Berlin"
        assert config.defaults.environment_id == "production"
        assert config.logging.level == "DEBUG"
        assert config.logging.json is True

    def test_sections_are_optional(self):
        """Test that omitted sections fall back to defaults."""
        config = load_gateway_config(self._write_config({"database": {"path": "x.db"}}))

        assert config.upstream.usage_endpoint == DEFAULT_USAGE_ENDPOINT
        assert config.defaults == CollectionDefaults()
        assert config.logging.level == "INFO"

    def test_metrics_accepts_comma_separated_string(self):
        """Test comma-separated metric defaults."""
        config = load_gateway_config(
            self._write_config({"defaults": {"metrics": "interactions, top_intents,,"}})
        )
        assert config.defaults.metrics == ("interactions", "top_intents")

    def test_missing_file_raises_error(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Gateway config file not found"):
            load_gateway_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file_raises_error(self):
        """Test that an empty config file is rejected."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_gateway_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("database: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_gateway_config(config_path)

    def test_unknown_top_level_key_rejected(self):
        """Test that unknown top-level keys are rejected."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_gateway_config(self._write_config({"databse": {"path": "x.db"}}))

    def test_unknown_section_key_rejected(self):
        """Test that unknown keys inside a section are rejected."""
        with pytest.raises(ValueError, match="Unknown defaults keys"):
            load_gateway_config(self._write_config({"defaults": {"limt": 5}}))

    def test_non_positive_limit_rejected(self):
        """Test that defaults.limit must be positive."""
        with pytest.raises(ValueError, match="positive integer"):
            load_gateway_config(self._write_config({"defaults": {"limit": 0}}))

    def test_invalid_endpoint_rejected(self):
        """Test that the upstream endpoint must be an http(s) URL."""
        with pytest.raises(ValueError, match="http"):
            load_gateway_config(self._write_config({"upstream": {"usage_endpoint": "ftp://x"}}))

    def test_invalid_log_level_rejected(self):
        """Test that unknown log levels are rejected."""
        with pytest.raises(ValueError, match="logging.level"):
            load_gateway_config(self._write_config({"logging": {"level": "loud"}}))


class TestEnvironmentConfig:
    """Test configuration built from environment variables."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_empty_environment_uses_defaults(self):
        """Test that no variables yields the built-in configuration."""
        config = load_gateway_config_from_env({})

        assert config == GatewayConfig()
        assert config.database.path == DEFAULT_DB_PATH

    def test_variable_overrides(self):
        """Test individual variable overrides."""
        config = load_gateway_config_from_env({
            "USAGE_GATEWAY_DB": "/data/usage.db",
            "DEFAULT_TENANT": "acme",
            "VF_METRICS": "interactions, credit_usage",
            "VF_TIMEZONE": "UTC",
            "VF_ENVIRONMENT_ID": "staging",
            "VF_USAGE_ENDPOINT": "https://example.test/usage",
        })

        assert config.database.path == "/data/usage.db"
        assert config.defaults.tenant == "acme"
        assert config.defaults.metrics == ("interactions", "credit_usage")
        assert config.defaults.timezone == "UTC"
        assert config.defaults.environment_id == "staging"
        assert config.upstream.usage_endpoint == "https://example.test/usage"

    def test_variables_override_config_file(self):
        """Test that variables win over the file named by USAGE_GATEWAY_CONFIG."""
        config_path = os.path.join(self.temp_dir, "gateway.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"defaults": {"tenant": "from-file", "limit": 50}}, f)

        config = load_gateway_config_from_env({
            "USAGE_GATEWAY_CONFIG": config_path,
            "DEFAULT_TENANT": "from-env",
        })

        assert config.defaults.tenant == "from-env"
        assert config.defaults.limit == 50
