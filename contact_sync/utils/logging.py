"""
Logging configuration for contact_sync.

Console output goes to stderr so command output on stdout stays
machine-readable. A dated log file under the configuration directory
captures everything at DEBUG. Records emitted while a user's changes are
being processed carry that user's id (see user_context), which the
verbose and file formats print.

Environment variables:
    CONTACT_SYNC_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL
    CONTACT_SYNC_DEBUG: 1/true/yes forces DEBUG
    CONTACT_SYNC_LOG_FILE: explicit log file, or none/disabled
"""

import contextvars
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from contact_sync.utils.paths import resolve_config_dir

LOGGER_NAME = "contact_sync"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [user=%(user_id)s] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_PREFIX = "contact_sync_"

ENV_LOG_LEVEL = "CONTACT_SYNC_LOG_LEVEL"
ENV_DEBUG = "CONTACT_SYNC_DEBUG"
ENV_LOG_FILE = "CONTACT_SYNC_LOG_FILE"

LEVEL_NAMES = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Placeholder when no user is being processed
NO_USER = "-"

_current_user: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "contact_sync_user", default=None
)

_log_dir_in_use: Optional[Path] = None


def default_log_dir() -> Path:
    """Logs live in a logs/ folder of the configuration directory."""
    return resolve_config_dir() / "logs"


def dated_log_name(day: Optional[datetime] = None) -> str:
    """File name for the given day's log (today by default)."""
    day = day or datetime.now()
    return f"{LOG_FILE_PREFIX}{day:%Y%m%d}.log"


# =============================================================================
# Per-user context
# =============================================================================


@contextmanager
def user_context(user_id: str) -> Iterator[None]:
    """
    Tag log records emitted inside the block with a user id.

    Example:
        with user_context("alice"):
            logger.info("Sweeping")   # file log shows [user=alice]
    """
    token = _current_user.set(user_id)
    try:
        yield
    finally:
        _current_user.reset(token)


def current_user() -> Optional[str]:
    """Return the user id set by the innermost user_context, if any."""
    return _current_user.get()


class UserContextFilter(logging.Filter):
    """Stamps record.user_id from the active user_context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = _current_user.get() or NO_USER
        return True


# =============================================================================
# Formatting
# =============================================================================


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level and message on capable terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._terminal_has_color()

    @staticmethod
    def _terminal_has_color() -> bool:
        isatty = getattr(sys.stderr, "isatty", None)
        if isatty is None or not isatty():
            return False
        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)

        # Other handlers share the record; color a copy
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        colored.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(colored)


# =============================================================================
# Setup
# =============================================================================


def get_log_level_from_env() -> int:
    """
    Read the console level from the environment.

    Returns:
        DEBUG when CONTACT_SYNC_DEBUG is truthy, otherwise the level named
        by CONTACT_SYNC_LOG_LEVEL (INFO if unset or unknown)
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    name = os.environ.get(ENV_LOG_LEVEL, "INFO").strip().upper()
    return LEVEL_NAMES.get(name, logging.INFO)


def get_log_file_path() -> Optional[Path]:
    """
    Resolve the log file from CONTACT_SYNC_LOG_FILE or the default directory.

    Returns:
        Path to the log file, or None when file logging is switched off
    """
    configured = os.environ.get(ENV_LOG_FILE)
    if configured is None:
        return default_log_dir() / dated_log_name()
    if configured.lower() in ("", "none", "disabled"):
        return None
    return Path(configured)


def _open_file_handler(
    logger: logging.Logger, path: Path, user_filter: logging.Filter
) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not open log file {path}: {e}")
        return

    handler.setLevel(logging.DEBUG)
    handler.addFilter(user_filter)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)
    logger.debug(f"Logging to {path}")


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the contact_sync logger.

    Calling it again replaces the previous handlers.

    Args:
        level: Console level; taken from the environment when None
        verbose: Force DEBUG and show timestamps, logger names and users
        log_dir: Directory for the dated log file
        log_file: Explicit log file; takes precedence over log_dir
        enable_file_logging: Set False for console-only logging
        use_colors: Color console output when the terminal supports it

    Returns:
        The package logger
    """
    global _log_dir_in_use

    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    user_filter = UserContextFilter()
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.addFilter(user_filter)
    if use_colors:
        console.setFormatter(ColoredFormatter(fmt, DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    logger.addHandler(console)

    path: Optional[Path] = None
    if enable_file_logging:
        if log_file is not None:
            path = log_file
        elif log_dir is not None:
            path = log_dir / dated_log_name()
        else:
            path = get_log_file_path()
    if path is not None:
        _open_file_handler(logger, path, user_filter)

    _log_dir_in_use = log_dir or (log_file.parent if log_file else None)
    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete all but the newest keep_count dated log files.

    Args:
        log_dir: Directory to prune; defaults to the directory passed to
            setup_logging, then to default_log_dir()
        keep_count: Files to keep; 0 or less disables pruning

    Returns:
        Number of files deleted
    """
    if keep_count <= 0:
        return 0

    directory = log_dir or _log_dir_in_use or default_log_dir()
    if not directory.is_dir():
        return 0

    logs = sorted(
        directory.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    deleted = 0
    for stale in logs[keep_count:]:
        try:
            stale.unlink()
        except OSError as e:
            logging.getLogger(LOGGER_NAME).debug(f"Could not remove {stale}: {e}")
            continue
        deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the contact_sync hierarchy."""
    if name != LOGGER_NAME and not name.startswith(f"{LOGGER_NAME}."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "CONSOLE_FORMAT",
    "ColoredFormatter",
    "DATE_FORMAT",
    "LOGGER_NAME",
    "UserContextFilter",
    "VERBOSE_FORMAT",
    "cleanup_old_logs",
    "current_user",
    "dated_log_name",
    "default_log_dir",
    "get_log_file_path",
    "get_log_level_from_env",
    "get_logger",
    "setup_logging",
    "user_context",
]
