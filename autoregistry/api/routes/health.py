"""Health Probe: store and cache reachability for load balancers and orchestration.

Invariants:
    - GET /health returns 503 "unhealthy" if the store is unreachable
    - An unreachable cache (while enabled) is "degraded" with 200: requests still work
    - Never raises: probe failures become status fields
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from autoregistry.api.deps import get_framework
from autoregistry.core.utilities import now_iso
from autoregistry.framework import Framework

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


def _cache_state(framework: Framework, reachable: bool) -> str:
    if not framework.settings.cache_enabled:
        return "disabled"
    return "healthy" if reachable else "unavailable"


@router.get("/health")
async def health_check(framework: Framework = Depends(get_framework)):
    checks = await framework.data_access.health_check()
    cache_state = _cache_state(framework, checks["cache"])

    if not checks["database"]:
        overall, code = "unhealthy", status.HTTP_503_SERVICE_UNAVAILABLE
    elif cache_state == "unavailable":
        overall, code = "degraded", status.HTTP_200_OK
    else:
        overall, code = "healthy", status.HTTP_200_OK

    if overall != "healthy":
        logger.warning(f"Health check {overall}: database={checks['database']} cache={cache_state}")

    return JSONResponse(
        status_code=code,
        content={
            "status": overall,
            "timestamp": now_iso(),
            "uptime": framework.uptime_seconds,
            "instance": framework.instance_id,
            "checks": {
                "database": "healthy" if checks["database"] else "unhealthy",
                "cache": cache_state,
            },
            "stats": checks["stats"],
        },
    )
