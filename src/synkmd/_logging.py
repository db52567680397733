"""Logging setup for the synkmd command line.

Modules log through `logging.getLogger(__name__)`; only the CLI entry point
attaches a handler. Pipeline warnings (unresolved links, unreadable
frontmatter, failed diagram renders) are logged where they are detected,
so the handler level decides how much of a run the user sees.

SYNKMD_LOG_LEVEL picks the level (DEBUG, INFO, WARNING, ERROR; INFO when
unset). `--quiet` lowers the output to errors without forgetting that
level.
"""

import logging
import os
import sys
from typing import TextIO

PACKAGE_LOGGER = "synkmd"
LOG_LEVEL_ENV = "SYNKMD_LOG_LEVEL"
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

# requests/urllib3 log every connection at DEBUG
_NOISY_LOGGERS = ("urllib3",)

_configured_level = logging.INFO


def resolve_level(name: str | None) -> int:
    """Map a level name to its number, falling back to INFO for unknown names."""
    if not name:
        return logging.INFO
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str | None = None, stream: TextIO | None = None) -> logging.Handler:
    """Attach the synkmd handler to the package logger.

    Args:
        level: Level name; defaults to $SYNKMD_LOG_LEVEL.
        stream: Output stream; defaults to stderr.

    Returns:
        The handler in use. Repeated calls return the existing handler and
        only update the level.
    """
    global _configured_level

    _configured_level = resolve_level(level if level is not None else os.environ.get(LOG_LEVEL_ENV))
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(_configured_level)

    if package_logger.handlers:
        handler = package_logger.handlers[0]
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
        package_logger.propagate = False
    handler.setLevel(_configured_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(_configured_level, logging.WARNING))
    return handler


def set_quiet_mode(quiet: bool) -> None:
    """Show only errors while quiet; otherwise restore the configured level."""
    level = logging.ERROR if quiet else _configured_level
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    for handler in package_logger.handlers:
        handler.setLevel(level)
