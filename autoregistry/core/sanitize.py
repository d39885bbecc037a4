"""Sanitization: redaction for logs and private-key stripping for responses.

Invariants:
    - Pure, recursive, input never mutated
    - A key is sensitive if its lowercase form contains any SENSITIVE_FIELDS entry
"""

import re
import traceback
from typing import Any

SENSITIVE_FIELDS = (
    "password", "passwd", "pwd", "token", "secret", "key", "auth",
    "authorization", "credit", "ssn", "private",
)

REDACTED = "[REDACTED]"


def is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(field in lowered for field in SENSITIVE_FIELDS)


def redact(value: Any) -> Any:
    """Replace sensitive-looking fields with a placeholder, at any depth."""
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive(str(k)) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def strip_private(value: Any) -> Any:
    """Drop keys starting with "_" from response data."""
    if isinstance(value, dict):
        return {
            k: strip_private(v) for k, v in value.items()
            if not str(k).startswith("_")
        }
    if isinstance(value, list):
        return [strip_private(v) for v in value]
    return value


def redact_fields(value: Any, fields: frozenset[str]) -> Any:
    """Replace values of exactly-named keys (case-insensitive) at any depth."""
    if not fields:
        return value
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in fields else redact_fields(v, fields)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact_fields(v, fields) for v in value]
    return value


def describe_error(exc: BaseException, include_trace: bool = False) -> dict:
    details = {
        "name": type(exc).__name__,
        "message": str(exc),
        "code": getattr(exc, "code", None),
    }
    if include_trace:
        details["stack"] = "".join(traceback.format_exception(exc))
    return details


_TAG = re.compile(r"<[^>]*>")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def sanitize_string(value: Any) -> str:
    """Trim and drop markup tags. None becomes ""."""
    if value is None:
        return ""
    return _TAG.sub("", str(value)).strip()


def slugify(value: Any) -> str:
    if value is None:
        return ""
    return _NON_SLUG.sub("-", str(value).lower()).strip("-")
