"""Structured logging via structlog.

Usage:
    >>> from batch_loader.utils.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("batch_executed", config_id="orders", batch_number=1, rows=500)

`configure_logging()` is called once by entry points (the CLI). Library code only
asks for loggers; until configured, structlog's defaults apply.
"""

from __future__ import annotations

import logging
import re
from typing import Any, MutableMapping

import structlog
from structlog.types import EventDict, Processor

from batch_loader.settings import get_settings

SENSITIVE_PATTERNS = [
    re.compile(r".*password.*", re.IGNORECASE),
    re.compile(r".*token.*", re.IGNORECASE),
    re.compile(r".*secret.*", re.IGNORECASE),
    re.compile(r".*dsn.*", re.IGNORECASE),
]

REDACTED_VALUE = "[REDACTED]"


def sanitization_processor(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> MutableMapping[str, Any]:
    """Redact values of sensitive keys before rendering."""
    return {
        k: (REDACTED_VALUE if any(p.match(k) for p in SENSITIVE_PATTERNS) else v)
        for k, v in event_dict.items()
    }


def configure_logging(level: str | None = None, *, json: bool | None = None) -> None:
    """
    Configure stdlib logging and structlog.

    `level`/`json` default to `BATCH_LOADER_LOG_LEVEL`/`BATCH_LOADER_LOG_JSON`.
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    use_json = settings.log_json if json is None else json

    logging.basicConfig(format="%(message)s", level=log_level, force=True)

    renderer: Processor = (
        structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=False)
    )
    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitization_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger named `name` (typically `__name__`)."""
    return structlog.get_logger(name)
