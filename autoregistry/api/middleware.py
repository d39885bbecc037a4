"""Request Identity: per-request id, instance id headers, and access logging.

Invariants:
    - request.state.request_id is set before any route or handler runs
    - Every response that passes through carries X-Request-ID and X-Instance-ID
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger("autoregistry.access")


def register_request_identity(app: FastAPI) -> None:

    @app.middleware("http")
    async def request_identity(request: Request, call_next):
        request.state.request_id = str(uuid.uuid4())
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = round((time.perf_counter() - started) * 1000, 3)

        framework = getattr(request.app.state, "framework", None)
        instance_id = framework.instance_id if framework else ""
        response.headers["X-Request-ID"] = request.state.request_id
        response.headers["X-Instance-ID"] = instance_id
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {elapsed}ms",
            extra={
                "request_id": request.state.request_id,
                "instance_id": instance_id,
                "http_method": request.method,
                "status_code": response.status_code,
                "response_time_ms": elapsed,
            },
        )
        return response
