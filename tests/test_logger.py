"""Tests for logger module."""

import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

from modguard.util.logger import (
    DATE_FORMAT,
    LOG_FORMAT,
    ColorFormatter,
    PromptToolkitHandler,
    console_level,
    get_logger,
    should_use_color,
)


def make_record(level, msg="message"):
    return logging.LogRecord(
        name="test", level=level, pathname="test.py", lineno=10,
        msg=msg, args=(), exc_info=None, func="test_func",
    )


class TestShouldUseColor:
    """Tests for should_use_color function."""

    @patch('sys.stderr.isatty')
    def test_should_use_color_tty(self, mock_isatty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        mock_isatty.return_value = True
        assert should_use_color() is True

    @patch('sys.stderr.isatty')
    def test_no_color_env_wins(self, mock_isatty, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "1")
        mock_isatty.return_value = True
        assert should_use_color() is False

    @patch('sys.stderr.isatty')
    def test_should_use_color_exception(self, mock_isatty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        mock_isatty.side_effect = Exception("Error")
        assert should_use_color() is False


class TestColorFormatter:
    """Tests for ColorFormatter class."""

    def test_error_is_red(self):
        formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        formatted = formatter.format(make_record(logging.ERROR, "[ORCHESTRATOR] failed"))
        assert formatted.startswith("\033[31m")
        assert formatted.endswith("\033[0m")
        assert "[ORCHESTRATOR] failed" in formatted


class TestConsoleLevel:
    def test_defaults_to_info(self, monkeypatch):
        monkeypatch.delenv("MODGUARD_LOG_LEVEL", raising=False)
        assert console_level() == logging.INFO

    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("MODGUARD_LOG_LEVEL", "debug")
        assert console_level() == logging.DEBUG

    def test_unknown_level_falls_back(self, monkeypatch):
        monkeypatch.setenv("MODGUARD_LOG_LEVEL", "chatty")
        assert console_level() == logging.INFO


class TestGetLogger:
    def test_handlers_are_attached_once(self):
        logger = get_logger("modguard_test_logger")
        again = get_logger("modguard_test_logger")

        assert logger is again
        assert len(logger.handlers) == 2
        assert any(isinstance(h, PromptToolkitHandler) for h in logger.handlers)
        assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
        assert logger.propagate is False
