"""Error Handlers: global exception handlers producing the error envelope.

Invariants:
    - FrameworkError -> its own status and code
    - RequestValidationError -> 400 VALIDATION_ERROR with field-level messages
    - Starlette HTTPException (unknown path, wrong verb) -> ROUTE_NOT_FOUND / METHOD_NOT_ALLOWED
    - Exception (catch-all) -> 500 INTERNAL_ERROR, never leaks internal details

Design Decisions:
    - Module failures never reach these handlers: the dispatch route formats them
      through the ErrorMonitor; these cover everything outside that path
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from autoregistry.api.deps import get_request_id
from autoregistry.api.envelope import error_response
from autoregistry.core.errors import FrameworkError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    404: "ROUTE_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_framework_error_handler(app)
    _register_http_error_handler(app)
    _register_validation_error_handler(app)
    _register_generic_error_handler(app)


def _register_framework_error_handler(app: FastAPI) -> None:

    @app.exception_handler(FrameworkError)
    async def framework_error_handler(request: Request, exc: FrameworkError):
        logger.warning(
            f"FrameworkError: {exc.message}",
            extra={"error_code": exc.code, "request_id": get_request_id(request)},
        )
        return error_response(exc, get_request_id(request))


def _register_http_error_handler(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            error = NotFoundError(
                f"Route {request.method} {request.url.path} not found", "ROUTE_NOT_FOUND",
            )
        else:
            error = FrameworkError(
                str(exc.detail), _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"), exc.status_code,
            )
        return error_response(error, get_request_id(request))


def _register_validation_error_handler(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        error = ValidationError(
            "Invalid request data",
            validation_errors=[
                f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}"
                for e in exc.errors()
            ],
        )
        return error_response(error, get_request_id(request))


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all: never leaks internal details."""
        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            exc_info=True,
        )
        error = FrameworkError("An unexpected error occurred", "INTERNAL_ERROR", 500)
        return error_response(error, get_request_id(request))
