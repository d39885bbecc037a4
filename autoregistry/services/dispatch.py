"""Module Dispatch: invoke a resolved module method with a fresh capability object.

Invariants:
    - Only runs after the pipeline accepted the request (context.resolved is set)
    - The handler called is the one resolved at pipeline entry, even if the
      module is reloaded mid-request
    - Handler failures are recorded by the ErrorMonitor and re-raised unchanged
"""

from typing import Any

from autoregistry.core.domain_types import RequestContext
from autoregistry.services.error_monitor import ErrorMonitor
from autoregistry.services.execution_context import ExecutionContextBuilder


class ModuleDispatcher:
    """Routes an accepted RequestContext to its handler: method(request, data, caps)."""

    def __init__(self, builder: ExecutionContextBuilder, monitor: ErrorMonitor):
        self._builder = builder
        self._monitor = monitor

    async def execute(self, request: Any, context: RequestContext) -> Any:
        if context.resolved is None:
            raise RuntimeError(f"Dispatch before resolution for {context.route_label}")
        caps = self._builder.build(context)
        return await self._monitor.invoke(
            context.resolved.handler, context, request, context.data, caps,
        )
