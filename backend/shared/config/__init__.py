"""
Configuration module: Settings, logging.
"""

from shared.config.settings import settings, get_settings, Settings
from shared.config.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "get_logger",
    "setup_logging",
]
