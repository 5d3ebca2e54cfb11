"""
Tests for environment settings.
"""

import os
from pathlib import Path
from unittest.mock import patch

from src.infra.settings import DEFAULT_DB_PATH, _get_env_bool, get_settings


class TestEnvHelpers:

    def test_bool_values(self):
        with patch.dict(os.environ, {"FLAG": "yes"}):
            assert _get_env_bool("FLAG") is True
        with patch.dict(os.environ, {"FLAG": "off"}):
            assert _get_env_bool("FLAG", True) is False
        with patch.dict(os.environ, {"FLAG": "maybe"}):
            assert _get_env_bool("FLAG", True) is True


class TestGetSettings:

    def test_defaults(self):
        keys = ("POLICY_DB_PATH", "POLICY_POLL_INTERVAL", "LOG_LEVEL", "LOG_DIR")
        env = {k: v for k, v in os.environ.items() if k not in keys}
        with patch.dict(os.environ, env, clear=True):
            settings = get_settings()

        assert settings.db_path == Path(DEFAULT_DB_PATH)
        assert settings.poll_interval == 1.0
        assert settings.log_level == "INFO"
        assert settings.log_dir == "logs"
        assert settings.api_auth_enabled is False

    def test_overrides(self, tmp_path):
        with patch.dict(
            os.environ,
            {
                "POLICY_DB_PATH": str(tmp_path / "jobs.db"),
                "POLICY_POLL_INTERVAL": "0.5",
                "LOG_LEVEL": "DEBUG",
                "API_AUTH_ENABLED": "true",
            },
        ):
            settings = get_settings()

        assert settings.db_path == tmp_path / "jobs.db"
        assert settings.poll_interval == 0.5
        assert settings.log_level == "DEBUG"
        assert settings.api_auth_enabled is True

    def test_invalid_poll_interval_falls_back(self):
        with patch.dict(os.environ, {"POLICY_POLL_INTERVAL": "soon"}):
            assert get_settings().poll_interval == 1.0
        with patch.dict(os.environ, {"POLICY_POLL_INTERVAL": "-3"}):
            assert get_settings().poll_interval == 1.0
