"""
Infrastructure module - logging and environment settings.
"""

from .logging_config import setup_logging, DailyRotatingFileHandler
from .settings import Settings, get_settings

__all__ = [
    "setup_logging",
    "DailyRotatingFileHandler",
    "Settings",
    "get_settings",
]
