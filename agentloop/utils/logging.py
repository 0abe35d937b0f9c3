"""structlog configuration for the agentloop service."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

# Event keys whose values must never reach a log line
SECRET_MARKERS = ("private_key", "api_key", "service_key", "authorization", "signature", "bearer")

# Provider SDKs and the scheduler log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "apscheduler", "aiohttp.access")


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in event_dict:
        if any(marker in key.lower() for marker in SECRET_MARKERS):
            event_dict[key] = "***"
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """Console output by default; JSON_LOGS=1 emits one JSON object per line."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    as_json = os.environ.get("JSON_LOGS", "").strip().lower() in ("1", "true", "yes")

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if as_json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.set_exc_info, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
