"""Utility Helpers: stateless functions handed to module code as `caps.util`.

Invariants:
    - Every helper is a pure function (retry and sleep aside) with no shared state
    - validate() collects every rule violation before raising, never just the first
    - The framework never retries on its own; retry() is opt-in for module code
"""

import asyncio
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping
from urllib.parse import urlparse

from autoregistry.core.errors import ValidationError
from autoregistry.core.sanitize import sanitize_string, slugify

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL.match(value))


def validate_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def check_rules(data: Mapping[str, Any], rules: Mapping[str, Mapping[str, Any]]) -> list[str]:
    """Return one message per violated rule, in rule order."""
    errors: list[str] = []
    for name, rule in rules.items():
        value = data.get(name)
        if _is_blank(value):
            if rule.get("required"):
                errors.append(f"{name} is required")
            continue

        kind = rule.get("type")
        if kind == "email" and not validate_email(value):
            errors.append(f"{name} must be a valid email")
        if kind == "number" and not _is_number(value):
            errors.append(f"{name} must be a number")
        if kind == "url" and not validate_url(value):
            errors.append(f"{name} must be a valid URL")

        length = len(str(value))
        if rule.get("min_length") is not None and length < rule["min_length"]:
            errors.append(f"{name} must be at least {rule['min_length']} characters")
        if rule.get("max_length") is not None and length > rule["max_length"]:
            errors.append(f"{name} must not exceed {rule['max_length']} characters")

        pattern = rule.get("pattern")
        if pattern is not None and not re.search(pattern, str(value)):
            errors.append(f"{name} format is invalid")

        if _is_number(value):
            if rule.get("min") is not None and float(value) < rule["min"]:
                errors.append(f"{name} must be at least {rule['min']}")
            if rule.get("max") is not None and float(value) > rule["max"]:
                errors.append(f"{name} must not exceed {rule['max']}")
    return errors


def validate(data: Mapping[str, Any], rules: Mapping[str, Mapping[str, Any]]) -> None:
    """Raise ValidationError listing every violation; return None when valid."""
    errors = check_rules(data or {}, rules)
    if errors:
        raise ValidationError("Validation failed", validation_errors=errors)


def generate_id() -> str:
    return str(uuid.uuid4())


def generate_short_id() -> str:
    return uuid.uuid4().hex[:8]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def unix_timestamp() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def parse_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def chunk(items: list, size: int) -> list[list]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


def pick(obj: Mapping[str, Any], keys: Iterable[str]) -> dict:
    return {k: obj[k] for k in keys if k in obj}


def omit(obj: Mapping[str, Any], keys: Iterable[str]) -> dict:
    dropped = set(keys)
    return {k: v for k, v in obj.items() if k not in dropped}


async def retry(
    fn: Callable[[], Awaitable[Any]], attempts: int = 3, delay_seconds: float = 1.0,
) -> Any:
    """Await fn() up to `attempts` times with linear backoff; re-raise the last error."""
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception:
            if attempt == attempts:
                raise
            await asyncio.sleep(delay_seconds * attempt)


class Utilities:
    """Namespace exposed to module code as `caps.util`."""
    validate = staticmethod(validate)
    check_rules = staticmethod(check_rules)
    validate_email = staticmethod(validate_email)
    validate_url = staticmethod(validate_url)
    sanitize_string = staticmethod(sanitize_string)
    slugify = staticmethod(slugify)
    generate_id = staticmethod(generate_id)
    generate_short_id = staticmethod(generate_short_id)
    now_iso = staticmethod(now_iso)
    unix_timestamp = staticmethod(unix_timestamp)
    parse_int = staticmethod(parse_int)
    chunk = staticmethod(chunk)
    pick = staticmethod(pick)
    omit = staticmethod(omit)
    retry = staticmethod(retry)
