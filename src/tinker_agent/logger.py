"""Structured logging singleton.

Reads os.environ directly so logging is configured before Settings load.
Everything goes to stderr: the ``token`` and ``git-credential`` commands
own stdout. On a terminal events render for humans; otherwise (container
logs, git running the credential helper) they render as logfmt lines.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def _level() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _render_processors(interactive: bool) -> list[structlog.typing.Processor]:
    if interactive:
        return [
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    # logfmt has no multi-line form, so tracebacks become a field
    return [
        structlog.processors.format_exc_info,
        structlog.processors.LogfmtRenderer(
            key_order=["timestamp", "level", "event"], drop_missing=True
        ),
    ]


def _setup_logging() -> structlog.stdlib.BoundLogger:
    # stdlib root logger carries the level for filter_by_level
    logging.basicConfig(level=_level(), format="%(message)s", stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            *_render_processors(sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("tinker_agent")


logger = _setup_logging()


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical(
        "Uncaught exception",
        error_type=exc_type.__name__,
        exc_info=(exc_type, exc_value, exc_tb),
    )
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler
