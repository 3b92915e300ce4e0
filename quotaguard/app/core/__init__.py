"""Core utilities for quotaguard."""

from quotaguard.app.core.config import Settings, settings
from quotaguard.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
