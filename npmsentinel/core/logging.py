"""Structured logging for the CLI — structlog rendered through stdlib handlers."""

from __future__ import annotations

import logging
import logging.config
import os
import sys

import structlog

_QUIET_LOGGERS = ("httpx", "httpcore")


def _processors(verbose: bool) -> list[structlog.types.Processor]:
    chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if verbose:
        chain.append(
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            )
        )
    chain += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    return chain


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "auto":
        log_format = "console" if sys.stderr.isatty() else "json"
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(verbose: bool = False) -> None:
    """Route structlog events to stderr, keeping stdout for command output.

    ``NPMSENTINEL_LOG_LEVEL`` sets the level (default INFO); *verbose* forces
    DEBUG, tags each event with its call site and lets httpx log requests.
    ``NPMSENTINEL_LOG_FORMAT`` is ``console``, ``json`` or ``auto`` (console
    on a terminal, JSON otherwise; the default).
    """
    level = "DEBUG" if verbose else os.environ.get("NPMSENTINEL_LOG_LEVEL", "INFO").upper()
    processors = _processors(verbose)

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = _renderer(os.environ.get("NPMSENTINEL_LOG_FORMAT", "auto").lower())
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": processors,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "structlog",
                },
            },
            "root": {"handlers": ["stderr"], "level": level},
            "loggers": {
                name: {"level": "DEBUG" if verbose else "WARNING"} for name in _QUIET_LOGGERS
            },
        }
    )
