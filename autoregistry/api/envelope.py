"""Response Envelope: the one JSON shape every endpoint answers with.

Invariants:
    - Success: {success: true, data, requestId, version, timestamp, meta}
    - Error: {success: false, error: {code, message, ...}, requestId, timestamp, [debug]}
    - Success data never carries private ("_"-prefixed) keys
    - Configured redact fields are replaced with "[REDACTED]" after stripping
    - Rate-limit rejections carry a Retry-After header next to error.retryAfter
"""

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from autoregistry.core.errors import FrameworkError, RateLimitError
from autoregistry.core.sanitize import redact_fields, strip_private
from autoregistry.core.utilities import now_iso


def success_status(http_method: str) -> int:
    return 201 if http_method.upper() == "POST" else 200


def success_envelope(
    data: Any, request_id: str | None, version: str | None,
    instance_id: str, response_time_ms: float, redacted: frozenset[str] = frozenset(),
) -> dict:
    return {
        "success": True,
        "data": redact_fields(strip_private(jsonable_encoder(data)), redacted),
        "requestId": request_id,
        "version": version,
        "timestamp": now_iso(),
        "meta": {
            "responseTime": f"{round(response_time_ms)}ms",
            "instance": instance_id,
        },
    }


def error_envelope(error: FrameworkError, request_id: str | None, debug: dict | None = None) -> dict:
    body = {
        "success": False,
        "error": error.to_body(),
        "requestId": request_id,
        "timestamp": now_iso(),
    }
    if debug:
        body["debug"] = debug
    return body


def error_response(
    error: FrameworkError, request_id: str | None, debug: dict | None = None,
) -> JSONResponse:
    headers = None
    if isinstance(error, RateLimitError):
        headers = {"Retry-After": str(error.retry_after_seconds)}
    return JSONResponse(
        status_code=error.http_status,
        content=jsonable_encoder(error_envelope(error, request_id, debug)),
        headers=headers,
    )
