"""Logging for ``ledgerviz``: one handler on the package logger, nothing else.

Pipeline modules log through ``get_logger("ledgerviz.<module>")`` with
``stage:event key=value`` messages and never attach handlers. The CLI (or a
host application) calls :func:`configure_logging` once per invocation; until
then the package stays silent.

The level comes from the explicit argument, else ``LEDGERVIZ_LOG_LEVEL``,
else ``INFO``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "ledgerviz"
_ENV_LEVEL = "LEDGERVIZ_LOG_LEVEL"
_HANDLER_NAME = "ledgerviz-stream"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = logging.getLevelNamesMapping().get(level)
        return numeric if numeric is not None else logging.INFO
    env_val = os.getenv(_ENV_LEVEL)
    if env_val:
        return _parse_level(env_val)
    return logging.INFO


def _our_handler(logger: logging.Logger) -> logging.Handler | None:
    for h in logger.handlers:
        if h.get_name() == _HANDLER_NAME:
            return h
    return None


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
    force: bool = False,
) -> None:
    """Attach the package's stream handler, or leave an existing one alone.

    With ``force=True`` an existing handler is replaced, so a second CLI
    invocation in the same process (``--verbose`` after a quiet run) takes
    effect.
    """

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    existing = _our_handler(logger)
    if existing is not None:
        if not force:
            return
        logger.removeHandler(existing)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Records stop here; the host's root handlers do not print them twice.
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Child logger of ``ledgerviz``; silent until :func:`configure_logging` runs."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["DEFAULT_FORMAT", "configure_logging", "get_logger"]
