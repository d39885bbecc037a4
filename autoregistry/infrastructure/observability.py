"""Structured Logging: JSON formatter, setup, and request-bound logger adapters.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (request_id, module, method, error_code, ...) surfaced when present
    - JSON format in production, human-readable text available for development
"""

import json
import logging
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "request_id", "instance_id", "route_module", "method", "version", "user_id",
    "http_method", "status_code", "response_time_ms", "error_code",
    "error_kind", "error_category", "severity", "operational", "operation",
    "query_time_ms", "row_count", "cache_key", "count", "threshold",
    "error_details", "call_args",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Configure logging for the application."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


class RequestLogger(logging.LoggerAdapter):
    """Logger adapter that stamps every record with request identity.

    Call-site `extra` is merged over the bound fields instead of replacing them.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def request_logger(logger: logging.Logger, **fields) -> RequestLogger:
    return RequestLogger(logger, {k: v for k, v in fields.items() if v is not None})
