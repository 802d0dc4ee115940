"""
Logging configuration module.

Daily log rotation with process start time tracking.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

# Process start time is captured once and reused for all daily logs
_PROCESS_START_TIME: Optional[str] = None

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class DailyRotatingFileHandler(logging.FileHandler):
    """
    Daily rotating file handler.

    Creates one log file per calendar day with format:
    <log_dir>/flowpilot_YYYYMMDD_<START_HHMMSS>.log

    START_HHMMSS is fixed at process start, only YYYYMMDD changes.
    """

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8"):
        global _PROCESS_START_TIME

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        if _PROCESS_START_TIME is None:
            _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")

        self._start_hhmmss = _PROCESS_START_TIME
        self._current_date: Optional[str] = None

        super().__init__(self._get_current_log_path(), mode='a', encoding=encoding)
        self._current_date = datetime.now().strftime("%Y%m%d")

    def _get_current_log_path(self) -> str:
        """Get log file path for current date."""
        date_str = datetime.now().strftime("%Y%m%d")
        return str(self.log_dir / f"flowpilot_{date_str}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a record, rotating to new file if date changed."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            self.close()
            self.baseFilename = self._get_current_log_path()
            self._current_date = current_date
            self.stream = self._open()

        super().emit(record)


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Configure the `flowpilot` logger and return it.

    Every module logs through logging.getLogger(__name__), so they all inherit
    these handlers.

    Args:
        log_level (str): Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir (str): Directory for daily log files; None disables file logging

    Returns:
        logging.Logger: Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger("flowpilot")
    logger.setLevel(numeric_level)

    # Avoid duplicate lines through the root logger
    logger.propagate = False

    if logger.handlers:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir:
        file_handler = DailyRotatingFileHandler(log_dir=log_dir, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"Logging started - level: {log_level}, file: {file_handler.baseFilename}")
    else:
        logger.info(f"Logging started - level: {log_level}, console only")

    return logger
