"""Error Classifier: pure mapping from any failure to kind, category, severity.

Invariants:
    - No IO, no counters: frequency tracking lives in services/error_monitor.py
    - FrameworkError carries its own kind; foreign exceptions are classified by
      structured hints (`code`, `status_code`) in a fixed priority order
    - Operational kinds (validation, not-found, rate-limit, auth) are safe to surface

Priority order for foreign exceptions:
    database -> validation -> authentication -> authorization -> not-found
    -> rate-limit -> upstream-service -> network -> unknown
"""

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from autoregistry.core.errors import (
    ErrorCategory,
    ErrorKind,
    ErrorSeverity,
    FrameworkError,
)

CATEGORY_BY_KIND = {
    ErrorKind.DATABASE: ErrorCategory.INFRASTRUCTURE,
    ErrorKind.VALIDATION: ErrorCategory.CLIENT,
    ErrorKind.AUTHENTICATION: ErrorCategory.SECURITY,
    ErrorKind.AUTHORIZATION: ErrorCategory.SECURITY,
    ErrorKind.NOT_FOUND: ErrorCategory.CLIENT,
    ErrorKind.RATE_LIMIT: ErrorCategory.PROTECTION,
    ErrorKind.UPSTREAM_SERVICE: ErrorCategory.INFRASTRUCTURE,
    ErrorKind.NETWORK: ErrorCategory.INFRASTRUCTURE,
    ErrorKind.UNKNOWN: ErrorCategory.APPLICATION,
}

OPERATIONAL_KINDS = frozenset({
    ErrorKind.VALIDATION,
    ErrorKind.NOT_FOUND,
    ErrorKind.RATE_LIMIT,
    ErrorKind.AUTHENTICATION,
    ErrorKind.AUTHORIZATION,
})

STATUS_BY_KIND = {
    ErrorKind.DATABASE: 500,
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.UPSTREAM_SERVICE: 503,
    ErrorKind.NETWORK: 502,
    ErrorKind.UNKNOWN: 500,
}

MESSAGE_BY_KIND = {
    ErrorKind.DATABASE: "A database error occurred. Please try again later.",
    ErrorKind.VALIDATION: "Invalid input provided.",
    ErrorKind.AUTHENTICATION: "Authentication failed. Please check your credentials.",
    ErrorKind.AUTHORIZATION: "You do not have permission to perform this action.",
    ErrorKind.NOT_FOUND: "The requested resource was not found.",
    ErrorKind.RATE_LIMIT: "Too many requests. Please try again later.",
    ErrorKind.UPSTREAM_SERVICE: "A service error occurred. Please try again later.",
    ErrorKind.NETWORK: "Network error. Please check your connection and try again.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again later.",
}

# Store codes that mean the schema itself is broken
_SCHEMA_CODES = frozenset({"TABLE_NOT_FOUND"})


@dataclass(frozen=True)
class ErrorRecord:
    kind: ErrorKind
    category: ErrorCategory
    severity: ErrorSeverity
    operational: bool
    code: str
    http_status: int


def _status_of(exc: BaseException) -> int | None:
    for attr in ("http_status", "status_code", "statusCode"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def determine_kind(exc: BaseException) -> ErrorKind:
    if isinstance(exc, FrameworkError):
        return exc.kind
    code = getattr(exc, "code", None)
    status = _status_of(exc)
    if isinstance(exc, SQLAlchemyError) or code == "DATABASE_ERROR":
        return ErrorKind.DATABASE
    if code == "VALIDATION_ERROR" or status == 400:
        return ErrorKind.VALIDATION
    if code == "INVALID_TOKEN" or status == 401:
        return ErrorKind.AUTHENTICATION
    if status == 403:
        return ErrorKind.AUTHORIZATION
    if status == 404:
        return ErrorKind.NOT_FOUND
    if code == "RATE_LIMIT_EXCEEDED" or status == 429:
        return ErrorKind.RATE_LIMIT
    if code == "SERVICE_UNAVAILABLE" or (status is not None and status >= 500):
        return ErrorKind.UPSTREAM_SERVICE
    if code in ("ECONNREFUSED", "ETIMEDOUT") or isinstance(
        exc, (ConnectionError, TimeoutError),
    ):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def determine_severity(
    kind: ErrorKind, code: str, status: int,
) -> ErrorSeverity:
    if kind == ErrorKind.DATABASE and code in _SCHEMA_CODES:
        return ErrorSeverity.CRITICAL
    if kind == ErrorKind.UPSTREAM_SERVICE and status >= 500:
        return ErrorSeverity.CRITICAL
    if kind in (ErrorKind.AUTHENTICATION, ErrorKind.AUTHORIZATION):
        return ErrorSeverity.HIGH
    if kind in (ErrorKind.VALIDATION, ErrorKind.NETWORK):
        return ErrorSeverity.MEDIUM
    if kind in (ErrorKind.NOT_FOUND, ErrorKind.RATE_LIMIT):
        return ErrorSeverity.LOW
    return ErrorSeverity.MEDIUM


def classify(exc: BaseException) -> ErrorRecord:
    kind = determine_kind(exc)
    if isinstance(exc, FrameworkError):
        code, status = exc.code, exc.http_status
    else:
        code = str(getattr(exc, "code", None) or f"{kind.value.upper()}_ERROR")
        status = _status_of(exc) or STATUS_BY_KIND[kind]
    return ErrorRecord(
        kind=kind,
        category=CATEGORY_BY_KIND[kind],
        severity=determine_severity(kind, code, status),
        operational=kind in OPERATIONAL_KINDS,
        code=code,
        http_status=status,
    )
