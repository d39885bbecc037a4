"""Error Monitor: wraps module invocation with classification, counting and logging.

Invariants:
    - Every failure of a module method is classified exactly once and re-raised
    - Counters are keyed by (kind, module, method) and are process-local
    - The warning and critical threshold events fire once each, on the exact
      occurrence that reaches the threshold, never on later occurrences
    - Logged arguments and error details are redacted (passwords, tokens, keys)
    - Critical severity emits a separate "CRITICAL ERROR DETECTED" record

Formatting:
    - FrameworkError keeps its own code, message and status
    - Foreign operational errors keep their message; foreign non-operational
      errors get the kind's generic message
    - Outside production, non-operational errors carry a `debug` block
"""

import inspect
import logging
import time
from collections import Counter
from typing import Any, Callable

from autoregistry.core.domain_types import RequestContext
from autoregistry.core.error_classifier import MESSAGE_BY_KIND, ErrorRecord, classify
from autoregistry.core.errors import ErrorKind, ErrorSeverity, FrameworkError
from autoregistry.core.sanitize import describe_error, redact

logger = logging.getLogger(__name__)

LOG_LEVEL_BY_SEVERITY = {
    ErrorSeverity.CRITICAL: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}

CounterKey = tuple[ErrorKind, str, str]


class ErrorMonitor:
    def __init__(
        self,
        warning_threshold: int = 10,
        critical_threshold: int = 50,
        slow_ms: float = 1000,
        expose_details: bool = False,
    ):
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.slow_ms = slow_ms
        self.expose_details = expose_details
        self._counts: Counter[CounterKey] = Counter()

    async def invoke(self, handler: Callable[..., Any], context: RequestContext, *args) -> Any:
        """Call handler(*args), awaiting it if needed; classify and re-raise failures."""
        started = time.perf_counter()
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            elapsed = round((time.perf_counter() - started) * 1000, 3)
            self.record(e, context, elapsed, context.data)
            raise
        elapsed = round((time.perf_counter() - started) * 1000, 3)
        if elapsed > self.slow_ms:
            logger.warning(
                f"Slow response detected: {context.route_label} took {elapsed}ms",
                extra={
                    "request_id": context.request_id,
                    "route_module": context.module,
                    "method": context.method,
                    "user_id": context.user_id,
                    "response_time_ms": elapsed,
                },
            )
        return result

    def record(
        self, exc: BaseException, context: RequestContext,
        response_time_ms: float | None = None, call_args: Any = None,
    ) -> ErrorRecord:
        classified = classify(exc)
        self._track(classified.kind, context)

        fields = {
            "request_id": context.request_id,
            "route_module": context.module,
            "method": context.method,
            "user_id": context.user_id,
            "response_time_ms": response_time_ms,
            "error_code": classified.code,
            "error_kind": classified.kind.value,
            "error_category": classified.category.value,
            "severity": classified.severity.value,
            "operational": classified.operational,
            "error_details": redact(describe_error(exc, include_trace=self.expose_details)),
            "call_args": redact(call_args),
        }
        logger.log(
            LOG_LEVEL_BY_SEVERITY[classified.severity],
            f"{context.route_label} failed: {exc}",
            extra=fields,
        )
        if classified.severity == ErrorSeverity.CRITICAL:
            logger.error("CRITICAL ERROR DETECTED", extra=fields)
        return classified

    def _track(self, kind: ErrorKind, context: RequestContext) -> int:
        key = (kind, context.module or "", context.method or "")
        self._counts[key] += 1
        count = self._counts[key]
        if count == self.warning_threshold:
            self._threshold_reached(logging.WARNING, "warning", key, count)
        if count == self.critical_threshold:
            self._threshold_reached(logging.CRITICAL, "critical", key, count)
        return count

    def _threshold_reached(self, level: int, name: str, key: CounterKey, count: int) -> None:
        kind, module, method = key
        logger.log(
            level,
            f"Error threshold reached: {kind.value} in {module}.{method}",
            extra={
                "route_module": module, "method": method, "error_kind": kind.value,
                "count": count, "threshold": name,
            },
        )

    # ─── Formatting ──────────────────────────────────────────────

    def format_error(self, exc: BaseException) -> tuple[FrameworkError, dict | None]:
        """Turn any failure into a safe FrameworkError plus an optional debug block."""
        classified = classify(exc)
        debug = None
        if self.expose_details and not classified.operational:
            debug = describe_error(exc, include_trace=True)

        if isinstance(exc, FrameworkError):
            return exc, debug

        message = str(exc) if classified.operational and str(exc) else MESSAGE_BY_KIND[classified.kind]
        return FrameworkError(message, classified.code, classified.http_status), debug

    # ─── Stats ───────────────────────────────────────────────────

    def stats(self) -> dict:
        by_kind: Counter[str] = Counter()
        by_module: Counter[str] = Counter()
        frequent = []
        for (kind, module, method), count in self._counts.items():
            by_kind[kind.value] += count
            by_module[module] += count
            if count >= self.warning_threshold:
                frequent.append({
                    "key": f"{kind.value}:{module}:{method}",
                    "count": count,
                    "kind": kind.value,
                    "module": module,
                    "method": method,
                })
        frequent.sort(key=lambda item: item["count"], reverse=True)
        return {
            "totalErrors": sum(self._counts.values()),
            "errorsByKind": dict(by_kind),
            "errorsByModule": dict(by_module),
            "frequentErrors": frequent,
        }

    def count(self, kind: ErrorKind, module: str, method: str) -> int:
        return self._counts[(kind, module, method)]

    def reset(self) -> None:
        self._counts.clear()
