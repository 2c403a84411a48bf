"""
Structured logging for tabharvest.

Every event is a structlog event rendered as one JSON line (stderr and a
daily file under general.logs_dir). Flows tag their events with scoped
context instead of repeating identifiers in each call:

    command   set by Harvester.dispatch for the whole command
    job       batch position, set by run_batch for each job
    tab_id    set by open_tab while a hidden tab is held

Records API credentials never reach a log line; see _redact_secrets.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from tabharvest.utils.config import get_project_root, get_settings

SECRET_KEYS = frozenset(
    {
        "client_secret",
        "x-propertyware-client-secret",
        "authorization",
    }
)
REDACTED = "***"


def _redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key in event_dict.keys() & SECRET_KEYS:
        event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SECRET_KEYS else value
            for name, value in headers.items()
        }
    return event_dict


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR (default: general.log_level).
        log_file: Log file path (default: logs_dir/tabharvest_YYYYMMDD.log).
        json_format: JSON lines (True) or colored console output (False).
    """
    settings = get_settings()

    if log_level is None:
        log_level = settings.general.log_level

    if log_file is None:
        log_dir = get_project_root() / settings.general.logs_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"tabharvest_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[
            # stdout carries the command response
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """Bind log context for a block; on exit the previous values come back.

    Nested blocks may rebind the same key (a tab opened inside another tab's
    flow); leaving the inner block restores the outer value.

    Example:
        with LogContext(command="download_invoices"):
            logger.info("Processing batch")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self.context))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}
