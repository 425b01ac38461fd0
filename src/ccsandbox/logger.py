"""Structured logging singleton for the ``ccs`` CLI.

Reads ``LOG_LEVEL`` from os.environ directly: the logger exists before the
pydantic Settings, so a malformed config file can still be reported. User
output goes to stdout; log lines go to stderr and default to WARNING, so a
normal launch prints none.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

_DEFAULT_LEVEL = "WARNING"


def _resolve_level(level_name: str) -> int | None:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else None


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level = _resolve_level(os.environ.get("LOG_LEVEL", _DEFAULT_LEVEL)) or logging.WARNING

    # stdlib root logger first so filter_by_level sees the right threshold
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger()


logger = _setup_logging()


def set_level(level_name: str) -> None:
    """Change the threshold after startup (``-v``/``-vv`` or ``[logging].level``)."""
    level = _resolve_level(level_name)
    if level is None:
        logger.warning("Unknown log level ignored", level=level_name)
        return
    logging.getLogger().setLevel(level)


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("ccs crashed", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
