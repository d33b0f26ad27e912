"""
Core utilities and configuration for RelayMind-AI.

This package provides settings and logging configuration shared by the
agent engine.
"""

from relaymind_ai.core.config import EngineSettings, Settings, get_settings
from relaymind_ai.core.logging_config import get_logger, setup_logging

__all__ = ["EngineSettings", "Settings", "get_settings", "get_logger", "setup_logging"]
