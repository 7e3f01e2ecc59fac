"""Console logging with severity levels and coloured, caller-tagged lines."""

from __future__ import annotations

import enum
import inspect
import sys


class LogLevel(enum.IntEnum):
    """Severity levels, from most to least severe."""

    MIN = -1
    EMERGENCY = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARN = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7
    MAX = 8


BLACK = "\033[1;30;30m"
RED = "\033[1;30;31m"
GREEN = "\033[1;30;32m"
YELLOW = "\033[1;30;33m"
BLUE = "\033[1;30;34m"
PURPLE = "\033[1;30;35m"
WHITE = "\033[1;30;37m"
END = "\033[0m"

_level = LogLevel.INFO


def set_log_level(level: int) -> None:
    """Set the most verbose level that is still printed."""
    global _level
    _level = LogLevel(level)


def get_log_level() -> LogLevel:
    """Return the current log level."""
    return _level


def _emit(tag: str, color: str, message: str) -> None:
    frame = inspect.currentframe()
    caller = frame.f_back.f_back if frame is not None and frame.f_back is not None else None
    if caller is not None:
        name, line = caller.f_code.co_name, caller.f_lineno
    else:
        name, line = "?", 0
    del frame, caller
    sys.stdout.write(f"{color}[{tag}][{name:>32}][{line:4d}]: {message}{END}\n")


def log_error(message: str) -> None:
    """Print an error line; errors are always printed."""
    _emit("E", RED, message)


def log_warn(message: str) -> None:
    """Print a warning line if the level allows it."""
    if _level >= LogLevel.WARN:
        _emit("W", YELLOW, message)


def log_notice(message: str) -> None:
    """Print a notice line if the level allows it."""
    if _level >= LogLevel.NOTICE:
        _emit("N", PURPLE, message)


def log_info(message: str) -> None:
    """Print an informational line if the level allows it."""
    if _level >= LogLevel.INFO:
        _emit("I", GREEN, message)


def log_debug(message: str) -> None:
    """Print a debug line if the level allows it."""
    if _level >= LogLevel.DEBUG:
        _emit("D", WHITE, message)