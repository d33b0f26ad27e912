"""Unit tests for logging configuration module.

Tests verify that setup_logging installs the expected handlers, levels and
formats, and that module-specific levels are applied.
"""

import logging
from pathlib import Path

import pytest

from relaymind_ai.core.logging_config import (
    DETAILED_FORMAT,
    JSON_FORMAT,
    LOG_FILE_NAME,
    MODULE_LOG_LEVELS,
    SIMPLE_FORMAT,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def _console_handler() -> logging.Handler:
    root_logger = logging.getLogger()
    handler = next(
        (
            h
            for h in root_logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        ),
        None,
    )
    assert handler is not None
    return handler


class TestSetupLoggingLogLevels:
    """Test setup_logging with different log levels."""

    @pytest.mark.parametrize(
        "log_level,expected_level",
        [
            ("DEBUG", logging.DEBUG),
            ("WARNING", logging.WARNING),
            ("CRITICAL", logging.CRITICAL),
            ("info", logging.INFO),  # Test lowercase
        ],
    )
    def test_setup_logging_with_different_levels(self, log_level, expected_level):
        setup_logging(log_level=log_level, enable_file=False)

        assert _console_handler().level == expected_level

    def test_root_logger_captures_everything(self):
        setup_logging(log_level="ERROR", enable_file=False)

        assert logging.getLogger().level == logging.DEBUG


class TestSetupLoggingFormats:
    """Test setup_logging with different log formats."""

    @pytest.mark.parametrize(
        "log_format,expected_format",
        [
            ("simple", SIMPLE_FORMAT),
            ("detailed", DETAILED_FORMAT),
            ("json", JSON_FORMAT),
            ("unknown", DETAILED_FORMAT),
        ],
    )
    def test_setup_logging_with_different_formats(self, log_format, expected_format):
        setup_logging(log_format=log_format, enable_file=False)

        assert _console_handler().formatter._fmt == expected_format

    def test_setup_logging_format_with_timestamp(self):
        setup_logging(log_format="detailed", enable_file=False)

        assert _console_handler().formatter.datefmt == "%Y-%m-%d %H:%M:%S"


class TestSetupLoggingFileHandling:
    """Test setup_logging file logging functionality."""

    def test_file_handler_is_debug_and_creates_directory(self, tmp_path: Path):
        log_dir = tmp_path / "new_logs"
        assert not log_dir.exists()

        setup_logging(log_level="ERROR", enable_file=True, log_file_dir=str(log_dir))

        file_handler = next(h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler))
        assert log_dir.exists()
        assert file_handler.level == logging.DEBUG
        assert Path(file_handler.baseFilename) == (log_dir / LOG_FILE_NAME).resolve()

    def test_setup_logging_with_file_disabled(self):
        setup_logging(enable_file=False)

        assert not any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)


class TestSetupLoggingHandlerManagement:
    """Test setup_logging handler management."""

    def test_setup_logging_removes_existing_handlers(self):
        setup_logging(enable_file=False)
        setup_logging(enable_file=False)

        assert len(logging.getLogger().handlers) == 1

    def test_module_levels_are_applied(self):
        setup_logging(enable_file=False)

        for module_name, module_level in MODULE_LOG_LEVELS.items():
            assert logging.getLogger(module_name).level == logging.getLevelName(module_level)
        assert logging.getLogger("relaymind_ai.agent_core.runtime").level == logging.DEBUG
        assert logging.getLogger("sqlalchemy").level == logging.WARNING


def test_get_logger_returns_named_logger():
    logger = get_logger("relaymind_ai.agent_core.runtime.engine")

    assert logger.name == "relaymind_ai.agent_core.runtime.engine"
    assert logger is logging.getLogger("relaymind_ai.agent_core.runtime.engine")
