"""Framework Info & Metrics: registered modules and process-local counters."""

from fastapi import APIRouter, Depends

from autoregistry.api.deps import get_framework
from autoregistry.core.utilities import now_iso
from autoregistry.framework import FRAMEWORK_NAME, FRAMEWORK_VERSION, Framework

router = APIRouter(prefix="/api", tags=["info"])


def collect_metrics(framework: Framework) -> dict:
    return {
        "timestamp": now_iso(),
        "process": {
            "pid": framework.pid,
            "uptimeSeconds": framework.uptime_seconds,
            "instance": framework.instance_id,
        },
        "database": framework.data_access.stats(),
        "errors": framework.monitor.stats(),
    }


@router.get("/info")
async def framework_info(framework: Framework = Depends(get_framework)):
    return {
        "name": FRAMEWORK_NAME,
        "version": FRAMEWORK_VERSION,
        "environment": framework.settings.environment,
        "instance": framework.instance_id,
        "startedAt": framework.started_at.isoformat(),
        "supportedVersions": framework.pipeline.supported_versions,
        "modules": framework.registry.module_info(),
        "metrics": collect_metrics(framework),
    }


@router.get("/metrics")
async def framework_metrics(framework: Framework = Depends(get_framework)):
    return collect_metrics(framework)
