"""Error Hierarchy: typed, classified exceptions for every framework failure mode.

Invariants:
    - Every error carries a kind (ErrorKind), a code (str), an HTTP status and a message
    - ErrorKind is closed: classification never invents a kind outside the enum
    - Messages on FrameworkError are framework-constructed and safe to return verbatim
    - to_body() produces the "error" object of the response envelope

Design Decisions:
    - Single hierarchy with FrameworkError base: the FastAPI handler and the error
      monitor both catch it, so gate failures and module failures share one shape
    - Extra error-body fields (requiredRoles, retryAfter) live in `details`
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed failure taxonomy."""
    DATABASE = "database"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    UPSTREAM_SERVICE = "upstream_service"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ErrorCategory(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    CLIENT = "client"
    SECURITY = "security"
    PROTECTION = "protection"
    APPLICATION = "application"


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FrameworkError(Exception):
    """Base exception for all framework errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        http_status: int = 500,
        validation_errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.validation_errors = validation_errors
        self.details = details or {}

    def to_body(self) -> dict:
        """Build the `error` object of the response envelope."""
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.validation_errors:
            body["validationErrors"] = list(self.validation_errors)
        body.update(self.details)
        return body


# ─── Client Errors (4xx) ─────────────────────────────────────────

class ValidationError(FrameworkError):
    """Input rejected before or during module execution."""
    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str = "Validation failed",
        code: str = "VALIDATION_ERROR",
        validation_errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
        http_status: int = 400,
    ):
        super().__init__(message, code, http_status, validation_errors, details)


class AuthenticationError(FrameworkError):
    """Missing, expired, malformed, or otherwise invalid credentials."""
    kind = ErrorKind.AUTHENTICATION

    def __init__(
        self, message: str, code: str = "INVALID_TOKEN",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, 401, details=details)


class AuthorizationError(FrameworkError):
    """Principal is known but lacks the required role, permission or ownership."""
    kind = ErrorKind.AUTHORIZATION

    def __init__(
        self, message: str, code: str = "INSUFFICIENT_PERMISSIONS",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, 403, details=details)


class NotFoundError(FrameworkError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message, code, 404)


class RateLimitError(FrameworkError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(
            message, "RATE_LIMIT_EXCEEDED", 429,
            details={"retryAfter": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


# ─── Infrastructure Errors ───────────────────────────────────────

class DatabaseError(FrameworkError):
    """Store failure, already translated to a domain code and status."""
    kind = ErrorKind.DATABASE

    def __init__(
        self,
        message: str = "Database operation failed",
        code: str = "DATABASE_ERROR",
        http_status: int = 500,
        sqlstate: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, http_status, details=details)
        self.sqlstate = sqlstate


class UpstreamServiceError(FrameworkError):
    kind = ErrorKind.UPSTREAM_SERVICE

    def __init__(
        self, message: str = "Upstream service unavailable",
        code: str = "SERVICE_UNAVAILABLE", http_status: int = 503,
    ):
        super().__init__(message, code, http_status)


class NetworkError(FrameworkError):
    kind = ErrorKind.NETWORK

    def __init__(self, message: str = "Network error", code: str = "NETWORK_ERROR"):
        super().__init__(message, code, 502)


class ModuleRegistrationError(ValueError):
    """Module source rejected at registration time (bad or missing config)."""
