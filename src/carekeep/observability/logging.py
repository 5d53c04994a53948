"""
Structured Logging

Features:
- JSON-formatted logs via structlog
- Stdlib level filtering
- Redaction of free-text fields that may carry PHI
"""

import logging
import sys
from typing import Any

import structlog

from carekeep.config import AppSettings

# Free-text fields a caller may fill with clinical detail
REDACTED_FIELDS = frozenset({"reason", "revoked_reason", "justification", "notes"})
REDACTED = "[REDACTED]"


def redact_free_text_processor(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask free-text values before rendering."""
    for key in REDACTED_FIELDS & event_dict.keys():
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(settings: AppSettings | None = None) -> None:
    """Configure structlog on top of the stdlib logging module."""
    settings = settings or AppSettings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_free_text_processor,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
