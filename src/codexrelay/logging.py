"""Logging for codex-relay.

All modules log through children of the ``codexrelay`` logger (``rpc``,
``codex``, ``session``, ``relay``, ``config``, ``cli``). Nothing is emitted
until setup_logging() installs a handler:

- a file, from ``logging.file`` in config or the CODEX_RELAY_LOG variable
- otherwise stderr, but only when stderr is a terminal, so a chat bridge that
  pipes our stderr does not receive log noise

Two extra levels sit around the standard ones. VERBOSE (15) covers
auto-answered server requests and thread decisions; TRACE (5) covers every
protocol line in both directions.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codexrelay.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_ENV_VAR = "CODEX_RELAY_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger("codexrelay")

# --verbose N, clamped to the last entry
VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_installed: logging.Handler | None = None


class LowercaseLevelFormatter(logging.Formatter):
    """Formats ``warning`` rather than ``WARNING``.

    The record is left untouched so other handlers still see the usual name.
    """

    def format(self, record: logging.LogRecord) -> str:
        copy = logging.makeLogRecord(record.__dict__)
        copy.levelname = record.levelname.lower()
        return super().format(copy)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for a logging config.

    ``verbose`` wins over ``level``. Unknown level names mean INFO.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = max(0, min(config.verbose, len(VERBOSITY_LEVELS) - 1))
        return VERBOSITY_LEVELS[index]
    if config.level:
        level = logging.getLevelName(config.level.upper())
        return level if isinstance(level, int) else logging.INFO
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install the package handler. Later calls do nothing until reset_logging().

    Args:
        config: Level, verbosity, and log file. The CODEX_RELAY_LOG variable
            is consulted when the config names no file.
    """
    global _installed
    if _installed is not None:
        return

    level = resolve_level(config)
    log_path = (config.file if config else None) or os.environ.get(LOG_ENV_VAR)

    handler: logging.Handler | None = None
    if log_path:
        handler = _file_handler(os.path.expanduser(log_path))
    if handler is None and sys.stderr.isatty():
        handler = logging.StreamHandler(sys.stderr)
    if handler is None:
        # Nowhere to write; keep records from reaching the root logger's lastResort
        handler = logging.NullHandler()

    handler.setLevel(level)
    handler.setFormatter(LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.setLevel(level)
    logger.addHandler(handler)
    _installed = handler


def reset_logging() -> None:
    """Remove the installed handler so setup_logging() can run again."""
    global _installed
    if _installed is not None:
        logger.removeHandler(_installed)
        _installed.close()
        _installed = None


def _file_handler(path: str) -> logging.Handler | None:
    try:
        return logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        if sys.stderr.isatty():
            print(f"[codexrelay] Failed to open log file {path}: {e}", file=sys.stderr)
        return None


def get_logger(name: str | None = None) -> logging.Logger:
    """The package logger, or its child ``codexrelay.<name>``."""
    return logger.getChild(name) if name else logger
