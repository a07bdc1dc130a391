"""
Logging for gliaseg.

Every module does ``logger = get_logger(__name__)``; the CLI calls
``setup_logging`` once with the level chosen by -v/-q and an optional
--log-file. Per-image failures are logged at ERROR by the batch stage.
"""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class ColoredFormatter(logging.Formatter):
    """Color the level name for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


_loggers: dict[str, logging.Logger] = {}
_initialized = False


def get_logger(name: str) -> logging.Logger:
    """Return the (cached) logger for a module name."""
    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)
    return _loggers[name]


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    log_dir: Optional[Union[str, Path]] = None,
    console: bool = True,
    colored: bool = True,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the root logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Level name or number
        log_file: Append log records to this file
        log_dir: Write to ``gliaseg_<timestamp>.log`` here (ignored if log_file is set)
        console: Log to stdout
        colored: Color level names when stdout is a TTY
        format_string: Record format (default: time | level | logger | message)

    Returns:
        The root logger
    """
    global _initialized

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    format_string = format_string or DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if _initialized:
        root_logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        formatter_cls = ColoredFormatter if colored and sys.stdout.isatty() else logging.Formatter
        console_handler.setFormatter(formatter_cls(format_string))
        root_logger.addHandler(console_handler)

    log_path = None
    if log_file:
        log_path = Path(log_file)
    elif log_dir:
        log_path = Path(log_dir) / f"gliaseg_{datetime.now():%Y%m%d_%H%M%S}.log"

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode='a')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(format_string))
        root_logger.addHandler(file_handler)
        root_logger.info(f"Logging to file: {log_path}")

    _initialized = True
    return root_logger


def log_parameters(logger: logging.Logger, params: dict, title: str = "Parameters") -> None:
    """Log a boxed block of run parameters; long lists are summarised by length."""
    rule = "=" * 50
    logger.info(rule)
    logger.info(title)
    logger.info(rule)
    for key, value in params.items():
        if isinstance(value, (list, tuple)) and len(value) > 5:
            value = f"[{len(value)} items]"
        logger.info(f"  {key}: {value}")
    logger.info(rule)


def format_duration(duration_seconds: float) -> str:
    """Render a duration as seconds, minutes or hours."""
    if duration_seconds >= 3600:
        return f"{duration_seconds/3600:.1f} hours"
    if duration_seconds >= 60:
        return f"{duration_seconds/60:.1f} minutes"
    return f"{duration_seconds:.1f} seconds"


class ProcessingTimer:
    """
    Time a block: DEBUG on entry, INFO with the duration on success,
    ERROR with the exception on failure. Exceptions are not suppressed.
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time
        if exc_type is not None:
            self.logger.error(f"Failed: {self.operation} after {self.duration:.1f}s - {exc_val}")
        else:
            self.logger.info(f"Completed: {self.operation} in {format_duration(self.duration)}")
        return False
