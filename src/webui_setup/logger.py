"""Leveled logging to stderr and an append-only log file.

Every line looks like::

    2025.01.31:14:02:11 - WARNING: docker stop ollama exitted with code 1, ignoring exit status.

With debug enabled, a callsite trace is inserted before the message::

    2025.01.31:14:02:11 - INFO:     update.log: /opt/bin/update: setup_steps::verify_nvidia_environment::212 -> ...
"""

import logging
import sys
from enum import IntEnum
from pathlib import Path
from typing import Optional

from webui_setup.constants import LEVEL_PREFIX_PAD_STRING, LOG_DATE_FORMAT

LOGGER_NAME = "webui_setup"


class LogLevel(IntEnum):
    """Verbosity tiers. Higher numbers are more verbose."""
    ERROR = 0
    WARNING = 1
    INFO = 2
    DEBUG_1 = 3
    DEBUG_2 = 4


DEFAULT_VERBOSITY = LogLevel.INFO

# logging has no second debug tier
DEBUG_2_LEVEL_NUM = 5
logging.addLevelName(DEBUG_2_LEVEL_NUM, "DEBUG2")

_LOGGING_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG_1: logging.DEBUG,
    LogLevel.DEBUG_2: DEBUG_2_LEVEL_NUM,
}

_LEVEL_TAGS = {
    LogLevel.ERROR: "ERROR:",
    LogLevel.WARNING: "WARNING:",
    LogLevel.INFO: "INFO:",
    LogLevel.DEBUG_1: "DEBUG:",
    LogLevel.DEBUG_2: "DEBUG:",
}

_FROM_LOGGING_LEVEL = {v: k for k, v in _LOGGING_LEVELS.items()}

_verbosity: int = DEFAULT_VERBOSITY
_debug: bool = False


def level_prefix(level: Optional[int]) -> str:
    """
    Right-padded level tag.

    Examples:
        >>> level_prefix(LogLevel.INFO)
        'INFO:   '
        >>> level_prefix(LogLevel.WARNING)
        'WARNING:'
    """
    tag = _LEVEL_TAGS.get(level, "LOG:") if level is not None else "LOG:"
    return tag.ljust(len(LEVEL_PREFIX_PAD_STRING))


def default_log_file() -> Path:
    """Return ``<script dir>/<script name>.log`` for the running script."""
    script = Path(sys.argv[0] or LOGGER_NAME).resolve()
    return script.parent / f"{script.name}.log"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def is_debug() -> bool:
    return _debug


class SetupLogFormatter(logging.Formatter):
    """Formats records as ``<timestamp> - <LEVEL:> [callsite -> ]<message>``."""

    def __init__(self, debug: bool = False, log_file: Optional[Path] = None) -> None:
        super().__init__(datefmt=LOG_DATE_FORMAT)
        self.debug = debug
        self.log_name = log_file.name if log_file else LOGGER_NAME
        self.script = sys.argv[0] or LOGGER_NAME

    def format(self, record: logging.LogRecord) -> str:
        level = getattr(record, "log_level", None)
        if level is None:
            level = _FROM_LOGGING_LEVEL.get(record.levelno)

        prefix = f"{self.formatTime(record, self.datefmt)} - {level_prefix(level)} "

        if self.debug:
            callsite = getattr(record, "callsite", None)
            if not callsite:
                callsite = f"{record.module}::{record.funcName}::{record.lineno}"
            prefix += f"{self.log_name}: {self.script}: {callsite} -> "

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{prefix}{message}"


def _python_level(verbosity: int) -> int:
    if verbosity < LogLevel.ERROR:
        return logging.CRITICAL + 1
    return _LOGGING_LEVELS[LogLevel(min(verbosity, LogLevel.DEBUG_2))]


def configure_logging(
    log_file: Optional[Path] = None,
    verbosity: Optional[int] = None,
    debug: Optional[bool] = None,
) -> logging.Logger:
    """
    Attach stderr and log-file handlers to the package logger.

    Calling again replaces (and closes) the handlers from the previous call.
    The log file is opened in append mode and never truncated.

    Args:
        log_file: Log file path (default: WEBUI_SETUP_LOG_FILE or next to the script)
        verbosity: Highest LogLevel to emit (default: VERBOSITY or INFO)
        debug: Include callsite traces (default: DEBUG)

    Returns:
        The configured logger.
    """
    global _verbosity, _debug

    if log_file is None or verbosity is None or debug is None:
        from webui_setup.config import load_settings

        settings = load_settings()
        if log_file is None:
            log_file = settings.log_file or default_log_file()
        if verbosity is None:
            verbosity = settings.verbosity if settings.verbosity is not None else DEFAULT_VERBOSITY
        if debug is None:
            debug = settings.debug

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    _verbosity = int(verbosity)
    _debug = bool(debug)

    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = SetupLogFormatter(debug=_debug, log_file=log_file)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.setLevel(_python_level(_verbosity))
    return logger


def log_message(
    message: str,
    level: int = LogLevel.INFO,
    context: Optional[str] = None,
) -> None:
    """
    Log one line if ``level`` is within the current verbosity.

    Args:
        message: Text to log
        level: LogLevel of the event
        context: Explicit callsite shown in debug mode; defaults to the caller's
            module::function::line
    """
    if level > _verbosity:
        return
    level = LogLevel(level)
    get_logger().log(
        _LOGGING_LEVELS[level],
        message,
        extra={"log_level": level, "callsite": context},
        stacklevel=2,
    )
