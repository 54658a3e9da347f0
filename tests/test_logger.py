"""Tests for logger module."""

import logging
from unittest.mock import patch

from guardcord.util import logger as logger_module
from guardcord.util.logger import (
    DATE_FORMAT,
    LOG_FORMAT,
    ColorFormatter,
    NOISY_LOGGERS,
    get_logger,
    setup_logger,
    should_use_color,
)


def make_record(level, msg="message"):
    return logging.LogRecord(
        name="test", level=level, pathname="test.py", lineno=10, msg=msg, args=(), exc_info=None, func="test_func"
    )


class TestShouldUseColor:
    """Tests for should_use_color function."""

    @patch('sys.stderr.isatty')
    def test_should_use_color_tty(self, mock_isatty):
        mock_isatty.return_value = True
        assert should_use_color() is True

    @patch('sys.stderr.isatty')
    def test_should_use_color_no_tty(self, mock_isatty):
        mock_isatty.return_value = False
        assert should_use_color() is False

    @patch('sys.stderr.isatty')
    def test_should_use_color_exception(self, mock_isatty):
        mock_isatty.side_effect = Exception("Error")
        assert should_use_color() is False


class TestColorFormatter:
    """Tests for ColorFormatter class."""

    def test_wraps_known_levels_in_color(self):
        formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        formatted = formatter.format(make_record(logging.ERROR, "Error message"))

        assert formatted.startswith("\033[31m")
        assert formatted.endswith("\033[0m")
        assert "Error message" in formatted

    def test_unknown_level_left_plain(self):
        formatter = ColorFormatter("%(message)s")
        record = make_record(logging.INFO, "custom")
        record.levelname = "TRACE"

        assert formatter.format(record) == "custom"


class TestSetupLogger:
    """Tests for setup_logger function."""

    def test_setup_logger_creates_logger(self):
        logger = setup_logger("guardcord_test_logger_1")

        assert logger.name == "guardcord_test_logger_1"
        assert logger.level == logging.DEBUG
        assert logger.propagate is False

    def test_setup_logger_returns_existing_without_new_handlers(self):
        logger1 = setup_logger("guardcord_test_logger_2")
        handler_count = len(logger1.handlers)
        logger2 = setup_logger("guardcord_test_logger_2")

        assert logger1 is logger2
        assert len(logger2.handlers) == handler_count == 2

    def test_file_handler_writes_to_session_log(self):
        logger = get_logger("guardcord_test_logger_3")
        logger.info("written to file")
        for handler in logger.handlers:
            handler.flush()

        assert logger_module.get_log_filepath().parent == logger_module.LOGS_DIR
        assert "written to file" in logger_module.get_log_filepath().read_text(encoding="utf-8")


def test_noisy_loggers_are_clamped():
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.ERROR


def test_handle_exception_logs_uncaught(caplog):
    with caplog.at_level(logging.ERROR):
        try:
            raise ValueError("boom")
        except ValueError as exc:
            logger_module.handle_exception(ValueError, exc, exc.__traceback__)

    assert "Uncaught exception" in caplog.text
