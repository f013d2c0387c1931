"""Logging utility with [LOG] prefix and coloured levels for the CRM backend."""

import logging
import sys
from datetime import datetime
from typing import Optional
from enum import Enum


class LogLevel(Enum):
    """Log levels for the application."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colours, the [LOG] prefix and an optional clock."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m',
        'BOLD': '\033[1m',
    }

    def __init__(self, show_timestamps: bool = False):
        super().__init__()
        self.show_timestamps = show_timestamps

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with colors and LOG prefix."""
        log_prefix = f"{self.COLORS['BOLD']}[LOG]{self.COLORS['RESET']}"
        if self.show_timestamps:
            stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
            log_prefix = f"{log_prefix} {stamp}"

        level_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])

        if record.levelname == 'INFO':
            # INFO messages are clean without level prefix
            return f"{log_prefix} {record.getMessage()}"
        return (f"{log_prefix} {level_color}[{record.levelname}]{self.COLORS['RESET']} "
                f"{record.getMessage()}")


class AppLogger:
    """Application logger with LOG prefix support."""

    _instance: Optional['AppLogger'] = None
    _logger: Optional[logging.Logger] = None

    def __new__(cls):
        """Singleton pattern to ensure single logger instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._logger is None:
            self._setup_logger()

    def _setup_logger(self, level: str = "INFO", show_timestamps: bool = False):
        """Set up the `zncrm` logger with a stdout handler."""
        self._logger = logging.getLogger("zncrm")
        self._logger.setLevel(getattr(logging, level))
        self._logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(ColoredFormatter(show_timestamps=show_timestamps))
        self._logger.addHandler(console_handler)

        # Prevent propagation to root logger
        self._logger.propagate = False

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def set_level(self, level: str):
        """Set the logging level."""
        if self._logger:
            self._logger.setLevel(getattr(logging, level.upper()))
            for handler in self._logger.handlers:
                handler.setLevel(getattr(logging, level.upper()))

    def show_timestamps(self, enabled: bool):
        for handler in self._logger.handlers:
            if isinstance(handler.formatter, ColoredFormatter):
                handler.formatter.show_timestamps = enabled

    def log(self, message: str, level: LogLevel = LogLevel.INFO):
        """Log a message with the specified level."""
        if self._logger:
            log_func = getattr(self._logger, level.value.lower())
            log_func(message)

    def debug(self, message: str):
        self.log(message, LogLevel.DEBUG)

    def info(self, message: str):
        self.log(message, LogLevel.INFO)

    def warning(self, message: str):
        self.log(message, LogLevel.WARNING)

    def error(self, message: str):
        self.log(message, LogLevel.ERROR)

    def critical(self, message: str):
        self.log(message, LogLevel.CRITICAL)


# Global logger instance
logger = AppLogger()


def setup_logging(level: str = "INFO", show_timestamps: bool = False):
    """Set up logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        show_timestamps: Prefix every line with the wall-clock time
    """
    logger.set_level(level)
    logger.show_timestamps(show_timestamps)
    logger.debug(f"Logger initialized at level {level.upper()}")


# Convenience functions
def log_info(message: str):
    logger.info(message)


def log_debug(message: str):
    logger.debug(message)


def log_warning(message: str):
    logger.warning(message)


def log_error(message: str):
    logger.error(message)


def log_critical(message: str):
    logger.critical(message)
