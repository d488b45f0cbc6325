"""
Logging setup for the treasury engine.

Modules log through `logging.getLogger(__name__)`; this module only installs a
handler on the package logger. Call `configure_logging()` once at process
start.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, TextIO, Union

LOGGER_NAME = "treasury_engine"
LEVEL_ENV = "TREASURY_ENGINE_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_LEVEL_TO_INT = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def _coerce_level(level: Union[str, int, None]) -> int:
    if level is None:
        level = os.environ.get(LEVEL_ENV, "WARNING")
    if isinstance(level, int):
        return level
    try:
        return _LEVEL_TO_INT[str(level).strip().upper()]
    except KeyError:
        raise ValueError(f"unknown log level: {level!r}") from None


def configure_logging(
    level: Union[str, int, None] = None,
    *,
    stream: Optional[TextIO] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Install a single stream handler on the `treasury_engine` logger.

    Level comes from `level`, else `TREASURY_ENGINE_LOG_LEVEL`, else WARNING.
    Calling again replaces the previous handler.
    """
    resolved = _coerce_level(level)
    logger = logging.getLogger(LOGGER_NAME)
    for h in list(logger.handlers):
        if getattr(h, "_treasury_engine", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))
    handler._treasury_engine = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    return logger
