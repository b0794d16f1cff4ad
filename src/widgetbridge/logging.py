"""The ``widgetbridge`` logger tree and its two extra levels.

Everything in the package logs under ``widgetbridge.*``. Two levels sit
between the standard ones:

- VERBOSE (15): guest lifecycle transitions
  (``created -> awaiting-ready -> handshaking -> connected -> closed``).
- TRACE (5): every envelope crossing the frame boundary, in both
  directions, on the port and on the window path.

The CLI starts from info and adds one step per ``-v``: ``-v`` shows
lifecycle transitions and ``-vv`` or more shows the full message traffic.
Output goes to a file (``logging.file`` or ``$WIDGETBRIDGE_LOG``) or, when
stderr is a terminal, to stderr. Otherwise nothing is installed.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from widgetbridge.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_ENV_VAR = "WIDGETBRIDGE_LOG"

logger = logging.getLogger("widgetbridge")

_configured = False

_NAMED_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "verbose": VERBOSE,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# verbose=N: 0 errors, 1 warnings, 2 info, 3 lifecycle, 4 traffic
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Level for a logging config.

    ``verbose`` wins over ``level``. Unknown level names mean INFO and any
    verbosity past the top of the scale means TRACE.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = max(config.verbose, 0)
        return _VERBOSITY_LEVELS[min(index, len(_VERBOSITY_LEVELS) - 1)]
    if config.level:
        return _NAMED_LEVELS.get(config.level.lower(), logging.INFO)
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install the handler for ``widgetbridge`` once per process.

    Later calls do nothing until reset_logging() runs.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = resolve_level(config)
    logger.setLevel(level)
    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"
    )

    path = (config.file if config is not None else None) or os.environ.get(LOG_ENV_VAR)
    handler: logging.Handler | None = None
    if path:
        try:
            handler = logging.FileHandler(os.path.expanduser(path), encoding="utf-8")
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[widgetbridge] cannot open log file {path}: {e}", file=sys.stderr)
                handler = logging.StreamHandler(sys.stderr)
    elif sys.stderr.isatty():
        handler = logging.StreamHandler(sys.stderr)

    if handler is not None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)


def reset_logging() -> None:
    """Detach and close installed handlers so setup_logging() applies again."""
    global _configured
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _configured = False


def get_logger(name: str | None = None) -> logging.Logger:
    """``widgetbridge.<name>``, or the package logger itself."""
    return logger.getChild(name) if name else logger
