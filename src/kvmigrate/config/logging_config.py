"""
Logging setup shared by the migration engine and the CLI.

Records go through the standard library `logging` module. When the host
application has not configured the root logger yet, a stderr handler with
the kvmigrate format is installed; otherwise its handlers are left alone and
only the kvmigrate logger levels are set.
"""

import logging
import os
import sys
from typing import ClassVar, Optional

from kvmigrate.config.environment import Environment

_PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_COLOR_FORMAT = "\x1b[90m%(asctime)s\x1b[0m | %(levelname_color)s | \x1b[36m%(name)s\x1b[0m | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Store drivers log every statement at DEBUG
_DRIVER_LEVELS = {
    "aiosqlite": logging.INFO,
    "botocore": logging.WARNING,
    "boto3": logging.WARNING,
    "urllib3": logging.WARNING,
}

_configured_level: Optional[str | int] = None


class _LevelColorFormatter(logging.Formatter):
    """Adds `levelname_color` to records for the coloured format."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\x1b[37m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        record.levelname_color = f"{color}{record.levelname}\x1b[0m" if color else record.levelname
        return super().format(record)


def _stderr_supports_color() -> bool:
    if os.getenv("NO_COLOR") is not None:
        return False
    try:
        return sys.stderr.isatty()
    except ValueError:
        # Closed stream
        return False


def build_formatter() -> logging.Formatter:
    """Formatter honouring `KVMIGRATE_LOG_FORMAT` and `KVMIGRATE_LOG_DATEFMT`."""
    fmt = os.getenv("KVMIGRATE_LOG_FORMAT")
    if fmt is None:
        fmt = _COLOR_FORMAT if _stderr_supports_color() else _PLAIN_FORMAT
    return _LevelColorFormatter(fmt=fmt, datefmt=os.getenv("KVMIGRATE_LOG_DATEFMT", _DATEFMT))


def configure_logging(level: Optional[str | int] = None) -> str | int:
    """Configure logging once per level.

    Args:
        level: Level name or number. Defaults to `Environment.get_log_level()`.

    Returns:
        The level in effect.
    """
    global _configured_level

    if level is None:
        level = Environment.get_log_level()
    if isinstance(level, str):
        level = level.upper()
    if level == _configured_level:
        return level
    _configured_level = level

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(build_formatter())
        root.addHandler(handler)
        root.setLevel(level)

    for name, driver_level in _DRIVER_LEVELS.items():
        logging.getLogger(name).setLevel(driver_level)
    return level


def get_logger(name: str) -> logging.Logger:
    """Return a module-scoped logger."""
    level = configure_logging()
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
