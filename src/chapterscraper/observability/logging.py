"""
Configures structured logging for the application using structlog.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog


def add_run_id(logger: logging.Logger, method_name: str, event_dict: Dict[Any, Any]) -> Dict[Any, Any]:
    """
    Adds the run_id to the log record if one was bound for the current run.
    """
    from structlog.contextvars import get_contextvars

    ctx = get_contextvars()
    if "run_id" in ctx:
        event_dict["run_id"] = ctx["run_id"]
    return event_dict


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None, verbose: bool = False) -> None:
    """
    Sets up structlog to handle all logging for the application.

    Console output goes to stderr so it does not interleave with the progress
    display; a log file receives one JSON object per line.
    """
    if verbose and level.upper() not in ("DEBUG",):
        level = "DEBUG"

    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_run_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    log_renderer: Any
    handler: logging.Handler
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        log_renderer = structlog.processors.JSONRenderer()
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        log_renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                log_renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("chapterscraper.logging")
    logger.debug("Logging configured", level=level.upper(), output=str(log_file) if log_file else "stderr")
