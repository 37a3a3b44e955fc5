"""
Logging utilities.

WHAT: Centralized logging configuration with a per-harvest context field
WHY: Interleaved reserve/release lines from worker threads must be attributable to a harvest
HOW: Python logging with file and console handlers; a contextvar filled while a harvest lock is held
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

from ..core.config import settings

NO_CONTEXT = "-"

_log_context: ContextVar[str] = ContextVar("log_context", default=NO_CONTEXT)


class ContextFilter(logging.Filter):
    """Stamp every record with the current context as `record.context`."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = _log_context.get()
        return True


@contextmanager
def log_context(value: str):
    """Tag log records emitted inside the block (same thread or task) with `value`."""
    token = _log_context.set(value)
    try:
        yield
    finally:
        _log_context.reset(token)


def current_context() -> str:
    return _log_context.get()


def setup_logging():
    """
    Configure application logging.

    WHAT: Set up root logger with file and console handlers
    WHY: Ensure logs are captured to file and visible in console
    HOW: Handlers share a ContextFilter; the file format carries thread and harvest context
    """
    log_file = Path(settings.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers
    root_logger.handlers.clear()
    context_filter = ContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(context_filter)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(context)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.addFilter(context_filter)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s [%(context)s] - '
        '%(pathname)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(file_handler)

    root_logger.info(f"Logging initialized (level={settings.LOG_LEVEL}, file={log_file})")


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass __name__."""
    return logging.getLogger(name)
