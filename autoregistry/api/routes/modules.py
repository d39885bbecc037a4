"""Module Routes: the single business entry point, /api/{version}/{module}/{method}.

Invariants:
    - Every verb goes through the RequestPipeline before any module code runs
    - A pipeline rejection is answered immediately; the module is never invoked
    - Module failures are formatted by the ErrorMonitor (operational vs. generic)
    - POST answers 201, every other verb 200
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from autoregistry.api.deps import get_framework, get_request_id
from autoregistry.api.envelope import error_response, success_envelope, success_status
from autoregistry.core.domain_types import RequestContext
from autoregistry.framework import Framework
from autoregistry.services.request_pipeline import InboundRequest

router = APIRouter(prefix="/api", tags=["modules"])

VERBS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


async def _inbound(request: Request, version: str, module: str, method: str | None) -> InboundRequest:
    return InboundRequest(
        http_method=request.method,
        version=version,
        module=module,
        method=method,
        headers=dict(request.headers),
        query=dict(request.query_params),
        body=await request.body(),
        client_ip=request.client.host if request.client else None,
    )


async def _handle(
    request: Request, framework: Framework,
    version: str, module: str, method: str | None,
):
    context = RequestContext(
        request_id=get_request_id(request),
        instance_id=framework.instance_id,
        start_time=framework.clock(),
    )
    inbound = await _inbound(request, version, module, method)
    result = framework.pipeline.run(inbound, context)
    if not result.ok:
        return error_response(result.rejection, context.request_id)

    try:
        data = await framework.dispatcher.execute(request, context)
    except Exception as e:
        error, debug = framework.monitor.format_error(e)
        return error_response(error, context.request_id, debug)

    elapsed_ms = (framework.clock() - context.start_time) * 1000
    return JSONResponse(
        status_code=success_status(context.http_method),
        content=success_envelope(
            data, context.request_id, context.version, framework.instance_id, elapsed_ms,
            framework.settings.redacted_response_fields,
        ),
    )


@router.api_route("/{version}/{module}/{method}", methods=VERBS)
async def call_module_method(
    request: Request, version: str, module: str, method: str,
    framework: Framework = Depends(get_framework),
):
    return await _handle(request, framework, version, module, method)


@router.api_route("/{version}/{module}", methods=VERBS)
async def call_module_without_method(
    request: Request, version: str, module: str,
    framework: Framework = Depends(get_framework),
):
    """Answers 400 MISSING_METHOD through the pipeline instead of a routing 404."""
    return await _handle(request, framework, version, module, None)
