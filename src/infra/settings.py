"""
Environment configuration.

Values come from the process environment, with a .env file in the working
directory loaded first:

- POLICY_DB_PATH: SQLite database file (default: data/policy_jobs.db)
- POLICY_POLL_INTERVAL: scheduler poll interval in seconds (default: 1.0)
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_DIR: directory for daily log files (default: logs)
- API_AUTH_ENABLED / API_KEY: see src.api.dependencies.auth
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger("hypertable_policy_jobs")

load_dotenv()


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Settings] Invalid number for {key}: {val}, using default: {default}")
    return default


DEFAULT_DB_PATH = "data/policy_jobs.db"


@dataclass(frozen=True)
class Settings:
    db_path: Path
    poll_interval: float
    log_level: str
    log_dir: str
    api_auth_enabled: bool


def get_settings() -> Settings:
    """Read settings from the current environment."""
    poll_interval = _get_env_float("POLICY_POLL_INTERVAL", 1.0)
    if poll_interval <= 0:
        logger.warning(f"[Settings] POLICY_POLL_INTERVAL must be positive, got {poll_interval}, using 1.0")
        poll_interval = 1.0

    return Settings(
        db_path=Path(os.getenv("POLICY_DB_PATH", DEFAULT_DB_PATH)),
        poll_interval=poll_interval,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
        api_auth_enabled=_get_env_bool("API_AUTH_ENABLED", False),
    )
