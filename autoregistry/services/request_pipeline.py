"""Request Pipeline: the ordered gate chain every module call passes through.

Invariants:
    - Gates run in fixed order: route -> existence -> version -> rate limit ->
      authentication -> roles -> input -> data extraction
    - A gate returns None to continue or a FrameworkError to halt the request
    - The first halting gate wins; later gates never run for that request
    - Any unexpected exception inside the chain halts with 500 MIDDLEWARE_ERROR
    - One RateLimiterState per (module, method, version), created on first use
    - Public methods bypass authentication and roles, never rate limiting

Design Decisions:
    - Gates take a framework-neutral InboundRequest, so the chain is testable
      without an HTTP server
    - Clock is injectable so rate-limit windows can be tested without sleeping
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from autoregistry.core.domain_types import RequestContext
from autoregistry.core.errors import (
    AuthenticationError,
    AuthorizationError,
    FrameworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from autoregistry.core.rate_limit import RateLimiterState
from autoregistry.infrastructure.auth import TokenVerifier, extract_bearer
from autoregistry.services.module_registry import ModuleRegistry

logger = logging.getLogger(__name__)

BODY_REQUIRED_VERBS = frozenset({"POST", "PUT"})
QUERY_DATA_VERBS = frozenset({"GET", "DELETE"})
BODY_DATA_VERBS = frozenset({"POST", "PUT", "PATCH"})
JSON_CONTENT_TYPE = "application/json"


@dataclass
class InboundRequest:
    """What the pipeline needs from an HTTP request, already read off the wire."""
    http_method: str
    version: str | None
    module: str | None
    method: str | None
    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)
    body: bytes = b""
    client_ip: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def content_type(self) -> str:
        value = self.header("content-type") or ""
        return value.split(";", 1)[0].strip().lower()


@dataclass
class PipelineResult:
    context: RequestContext
    rejection: FrameworkError | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None


class RequestPipeline:
    """Runs the gate chain and produces a ready RequestContext or a rejection."""

    def __init__(
        self,
        registry: ModuleRegistry,
        verifier: TokenVerifier,
        supported_versions: list[str],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._verifier = verifier
        self.supported_versions = list(supported_versions)
        self._clock = clock
        self._limiters: dict[tuple[str, str, str], RateLimiterState] = {}
        self._gates = (
            self._extract_route,
            self._check_route_exists,
            self._check_version,
            self._apply_rate_limit,
            self._authenticate,
            self._authorize_roles,
            self._validate_input,
            self._extract_data,
        )

    def run(self, inbound: InboundRequest, context: RequestContext) -> PipelineResult:
        try:
            for gate in self._gates:
                rejection = gate(inbound, context)
                if rejection is not None:
                    logger.info(
                        f"Request rejected by {gate.__name__.lstrip('_')}: {rejection.code}",
                        extra={
                            "request_id": context.request_id,
                            "error_code": rejection.code,
                            "status_code": rejection.http_status,
                        },
                    )
                    return PipelineResult(context, rejection)
        except Exception as e:
            logger.error(
                f"Pipeline failure: {e}", exc_info=True,
                extra={"request_id": context.request_id},
            )
            return PipelineResult(
                context, FrameworkError("Internal middleware error", "MIDDLEWARE_ERROR", 500),
            )
        return PipelineResult(context)

    # ─── Gates ───────────────────────────────────────────────────

    def _extract_route(self, inbound: InboundRequest, context: RequestContext):
        context.http_method = inbound.http_method.upper()
        context.version = inbound.version
        context.module = inbound.module
        context.method = inbound.method
        context.client_ip = inbound.client_ip
        context.user_agent = inbound.header("user-agent")
        logger.debug(
            f"{context.http_method} /api/{context.version}/{context.module}/{context.method}",
            extra={"request_id": context.request_id},
        )
        if not context.module or not context.method:
            return ValidationError("Module and method are required", code="MISSING_METHOD")
        return None

    def _check_route_exists(self, inbound: InboundRequest, context: RequestContext):
        try:
            context.resolved = self._registry.resolve(
                context.module, context.method, context.version,
            )
        except NotFoundError as e:
            return e
        return None

    def _check_version(self, inbound: InboundRequest, context: RequestContext):
        if context.version in self.supported_versions:
            return None
        return ValidationError(
            f"API version '{context.version}' not supported. "
            f"Supported versions: {', '.join(self.supported_versions)}",
            code="UNSUPPORTED_VERSION",
            details={"supportedVersions": self.supported_versions},
        )

    def _apply_rate_limit(self, inbound: InboundRequest, context: RequestContext):
        limit = context.resolved.policy.rate_limit
        if limit is None:
            return None
        key = (context.module, context.method, context.version)
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = self._limiters[key] = RateLimiterState(limit)

        caller = inbound.client_ip or "unknown"
        known = self._verifier.peek(extract_bearer(inbound.header("authorization")))
        if known is not None:
            caller = f"{caller}:{known.id}"

        retry_after = limiter.hit(caller, self._clock())
        if retry_after is None:
            return None
        return RateLimitError(
            f"Rate limit exceeded for {':'.join(key)}. Limit: {limit}", retry_after,
        )

    def _authenticate(self, inbound: InboundRequest, context: RequestContext):
        policy = context.resolved.policy
        if policy.public:
            return None
        token = extract_bearer(inbound.header("authorization"))
        if not policy.auth_required:
            # Roles without auth_required: identity is optional here, enforced by roles
            if policy.roles:
                context.principal = self._verifier.peek(token)
            return None
        if token is None:
            return AuthenticationError("Authorization token required", "MISSING_TOKEN")
        try:
            context.principal = self._verifier.verify(token)
        except AuthenticationError as e:
            return e
        return None

    def _authorize_roles(self, inbound: InboundRequest, context: RequestContext):
        policy = context.resolved.policy
        if policy.public or not policy.roles:
            return None
        if context.principal is None:
            return AuthenticationError("Authentication required", "AUTHENTICATION_REQUIRED")
        held = set(context.principal.roles)
        if held & policy.roles:
            return None
        return AuthorizationError(
            "Insufficient permissions",
            details={"requiredRoles": sorted(policy.roles), "userRoles": sorted(held)},
        )

    def _validate_input(self, inbound: InboundRequest, context: RequestContext):
        verb = context.http_method
        if verb in BODY_REQUIRED_VERBS:
            if not inbound.body.strip():
                return ValidationError("Request body required", code="MISSING_BODY")
            if inbound.content_type != JSON_CONTENT_TYPE:
                return ValidationError(
                    "Content-Type must be application/json", code="INVALID_CONTENT_TYPE",
                )
        if verb in BODY_DATA_VERBS and inbound.body.strip():
            try:
                context.raw_input = json.loads(inbound.body)
            except ValueError:
                return ValidationError("Request body is not valid JSON", code="INVALID_JSON")
            if not isinstance(context.raw_input, dict):
                return ValidationError("Request body must be a JSON object", code="INVALID_BODY")
        return None

    def _extract_data(self, inbound: InboundRequest, context: RequestContext):
        verb = context.http_method
        if verb in QUERY_DATA_VERBS:
            context.data = dict(inbound.query)
        elif verb in BODY_DATA_VERBS:
            context.data = dict(context.raw_input or {})
        else:
            context.data = {}
        return None
