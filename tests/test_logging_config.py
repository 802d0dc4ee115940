"""
Tests for logging_config module.
"""

import logging

import pytest

from flowpilot.infra.logging_config import DailyRotatingFileHandler, setup_logging


@pytest.fixture(autouse=True)
def restore_flowpilot_logger():
    """setup_logging mutates the shared `flowpilot` logger; put it back afterwards."""
    yield
    logger = logging.getLogger("flowpilot")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class TestDailyRotatingFileHandler:
    """Tests for DailyRotatingFileHandler class."""

    def test_handler_creates_log_directory(self, tmp_path):
        """Test that handler creates log directory if it doesn't exist."""
        log_dir = tmp_path / "new_logs"
        assert not log_dir.exists()

        handler = DailyRotatingFileHandler(log_dir=str(log_dir))
        assert log_dir.exists()
        handler.close()

    def test_handler_creates_log_file(self, tmp_path):
        """Test that handler creates a log file with correct naming."""
        handler = DailyRotatingFileHandler(log_dir=str(tmp_path))

        log_files = list(tmp_path.glob("flowpilot_*.log"))
        assert len(log_files) == 1
        assert log_files[0].name.endswith(".log")
        handler.close()

    def test_handler_rotates_on_date_change(self, tmp_path):
        """A record after midnight lands in the new day's file."""
        handler = DailyRotatingFileHandler(log_dir=str(tmp_path))
        handler.setFormatter(logging.Formatter('%(message)s'))
        handler._current_date = "19990101"

        handler.emit(logging.LogRecord("test", logging.INFO, "", 0, "After midnight", (), None))
        handler.close()

        content = "".join(path.read_text() for path in tmp_path.glob("flowpilot_*.log"))
        assert "After midnight" in content
        assert handler._current_date != "19990101"


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_returns_package_logger(self, tmp_path):
        logger = setup_logging("INFO", str(tmp_path))

        assert logger.name == "flowpilot"
        assert logger.propagate is False

    def test_sets_level_on_logger_and_handlers(self, tmp_path):
        logger = setup_logging("debug", str(tmp_path))

        assert logger.level == logging.DEBUG
        assert all(handler.level == logging.DEBUG for handler in logger.handlers)

    def test_console_only(self):
        logger = setup_logging("WARNING", None)

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0], logging.FileHandler)

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        setup_logging("INFO", str(tmp_path))
        logger = setup_logging("INFO", str(tmp_path))

        assert len(logger.handlers) == 2

    def test_module_loggers_write_to_file(self, tmp_path):
        setup_logging("INFO", str(tmp_path))

        logging.getLogger("flowpilot.scheduler.dispatcher").info("Dispatched job abc")

        content = next(tmp_path.glob("flowpilot_*.log")).read_text()
        assert "Dispatched job abc" in content
        assert "flowpilot.scheduler.dispatcher - INFO" in content
