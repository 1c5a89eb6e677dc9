"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from capdomain.config import DEFAULT_PORT, Settings, get_settings, load_settings, set_settings
from capdomain.errors import ConfigError


class TestLoadSettings:
    """Test reading CAPDOMAIN_* variables."""

    def test_defaults(self):
        settings = load_settings({})

        assert settings == Settings()
        assert settings.port == DEFAULT_PORT
        assert settings.use_sandbox is True
        assert settings.scratch_dir == Path("/tmp/code-executor")

    def test_overrides_from_environment(self, tmp_path):
        settings = load_settings(
            {
                "CAPDOMAIN_DOMAINS_PATH": str(tmp_path),
                "CAPDOMAIN_CODE_TIMEOUT": "5",
                "CAPDOMAIN_SANDBOX": "off",
                "CAPDOMAIN_POLICY": "parallel",
                "CAPDOMAIN_LOG_LEVEL": "debug",
                "CAPDOMAIN_PORT": "8080",
            }
        )

        assert settings.domains_path == tmp_path
        assert settings.code_timeout_seconds == 5.0
        assert settings.use_sandbox is False
        assert settings.policy_id == "parallel"
        assert settings.log_level == "DEBUG"
        assert settings.port == 8080

    def test_blank_values_are_ignored(self):
        assert load_settings({"CAPDOMAIN_PORT": "  "}).port == DEFAULT_PORT

    @pytest.mark.parametrize(
        "name,value",
        [
            ("CAPDOMAIN_CODE_TIMEOUT", "soon"),
            ("CAPDOMAIN_REMOTE_TIMEOUT", "-1"),
            ("CAPDOMAIN_SANDBOX", "maybe"),
            ("CAPDOMAIN_PORT", "http"),
        ],
    )
    def test_malformed_values(self, name, value):
        """Malformed values raise a config error naming the variable."""
        with pytest.raises(ConfigError, match=name):
            load_settings({name: value})


class TestSettings:
    """Test settings helpers."""

    def test_with_overrides_ignores_none(self):
        settings = Settings().with_overrides(host="0.0.0.0", port=None)

        assert settings.host == "0.0.0.0"
        assert settings.port == DEFAULT_PORT

    def test_global_settings(self):
        custom = Settings(port=9999)
        set_settings(custom)
        try:
            assert get_settings() is custom
        finally:
            set_settings(None)
