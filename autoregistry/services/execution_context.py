"""Execution Context Builder: the capability object handed to every module method.

Invariants:
    - A fresh Capabilities is built per invocation and never reused across requests
    - `db` is the only way module code reaches the store; every call is timed and logged
    - `cache` never raises: an unavailable cache yields None / False / 0
    - `context` predicates are pure reads of the principal; require_* raise
      AuthorizationError (403) when the precondition fails
    - `util` helpers are pure functions with no shared state

Module methods are called as `method(request, data, caps)`.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

from autoregistry.core.domain_types import Principal, RequestContext
from autoregistry.core.errors import AuthorizationError
from autoregistry.core.utilities import Utilities
from autoregistry.infrastructure.cache import CacheClient
from autoregistry.infrastructure.database import DataAccess, QueryResult, TransactionHandle
from autoregistry.infrastructure.observability import RequestLogger, request_logger

logger = logging.getLogger("autoregistry.modules")

ADMIN_ROLE = "admin"


def _as_list(values: str | Iterable[str]) -> list[str]:
    return [values] if isinstance(values, str) else list(values)


class ScopedDataAccess:
    """DataAccess bound to one request: same primitives, plus per-call timing logs."""

    def __init__(self, data_access: DataAccess, log: RequestLogger, slow_ms: float):
        self._data = data_access
        self._log = log
        self._slow_ms = slow_ms

    async def _timed(self, operation: str, call: Awaitable[Any], **fields) -> Any:
        started = time.perf_counter()
        try:
            result = await call
        except Exception as e:
            elapsed = round((time.perf_counter() - started) * 1000, 3)
            self._log.error(
                f"Database {operation} failed after {elapsed}ms: {e}",
                extra={"operation": operation, "query_time_ms": elapsed,
                       "error_code": getattr(e, "code", None)},
            )
            raise
        elapsed = round((time.perf_counter() - started) * 1000, 3)
        level = logging.WARNING if elapsed > self._slow_ms else logging.DEBUG
        self._log.log(
            level, f"Database {operation} completed in {elapsed}ms",
            extra={"operation": operation, "query_time_ms": elapsed, **fields},
        )
        return result

    async def query(
        self, sql: str, params: Mapping[str, Any] | None = None,
        cache_key: str | None = None, ttl_seconds: int | None = None,
    ) -> QueryResult:
        return await self._timed(
            "query", self._data.query(sql, params, cache_key, ttl_seconds), cache_key=cache_key,
        )

    async def transaction(self, fn: Callable[[TransactionHandle], Awaitable[Any]]) -> Any:
        return await self._timed("transaction", self._data.transaction(fn))

    async def find_by_id(
        self, table: str, id: Any, cache_key: str | None = None, ttl_seconds: int | None = None,
    ) -> dict | None:
        return await self._timed(
            "find_by_id", self._data.find_by_id(table, id, cache_key, ttl_seconds),
        )

    async def find_by_field(
        self, table: str, field: str, value: Any,
        cache_key: str | None = None, ttl_seconds: int | None = None,
    ) -> list[dict]:
        return await self._timed(
            "find_by_field",
            self._data.find_by_field(table, field, value, cache_key, ttl_seconds),
        )

    async def insert(self, table: str, data: Mapping[str, Any]) -> dict | None:
        return await self._timed("insert", self._data.insert(table, data))

    async def update(self, table: str, id: Any, data: Mapping[str, Any]) -> dict | None:
        return await self._timed("update", self._data.update(table, id, data))

    async def delete(self, table: str, id: Any) -> bool:
        return await self._timed("delete", self._data.delete(table, id))


class ScopedCache:
    def __init__(self, cache: CacheClient, default_ttl: int):
        self._cache = cache
        self._default_ttl = default_ttl

    @property
    def available(self) -> bool:
        return self._cache.available

    async def get(self, key: str) -> Any | None:
        return await self._cache.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        return await self._cache.set(
            key, value, ttl_seconds if ttl_seconds is not None else self._default_ttl,
        )

    async def delete(self, key: str) -> int:
        return await self._cache.delete(key)

    async def invalidate(self, pattern: str) -> int:
        return await self._cache.invalidate(pattern)


class CallerContext:
    """Read-only view of the request and its principal, with authorization helpers."""

    def __init__(self, request: RequestContext, clock: Callable[[], float] = time.monotonic):
        self._request = request
        self._clock = clock

    request_id = property(lambda self: self._request.request_id)
    instance_id = property(lambda self: self._request.instance_id)
    module = property(lambda self: self._request.module)
    method = property(lambda self: self._request.method)
    version = property(lambda self: self._request.version)
    http_method = property(lambda self: self._request.http_method)
    client_ip = property(lambda self: self._request.client_ip)
    user_agent = property(lambda self: self._request.user_agent)

    @property
    def principal(self) -> Principal | None:
        return self._request.principal

    @property
    def user(self) -> dict | None:
        return self.principal.to_dict() if self.principal else None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    def _roles(self) -> set[str]:
        return set(self.principal.roles) if self.principal else set()

    def _permissions(self) -> set[str]:
        return set(self.principal.permissions) if self.principal else set()

    # ─── Predicates ──────────────────────────────────────────────

    def has_role(self, role: str) -> bool:
        return role in self._roles()

    def has_any_role(self, roles: str | Iterable[str]) -> bool:
        return any(r in self._roles() for r in _as_list(roles))

    def has_all_roles(self, roles: str | Iterable[str]) -> bool:
        held = self._roles()
        return bool(held) and all(r in held for r in _as_list(roles))

    def has_permission(self, permission: str) -> bool:
        return permission in self._permissions()

    def has_any_permission(self, permissions: str | Iterable[str]) -> bool:
        return any(p in self._permissions() for p in _as_list(permissions))

    def has_all_permissions(self, permissions: str | Iterable[str]) -> bool:
        held = self._permissions()
        return bool(held) and all(p in held for p in _as_list(permissions))

    def is_admin(self) -> bool:
        return self.has_role(ADMIN_ROLE)

    def is_owner(self, resource_owner_id: Any) -> bool:
        if self.principal is None or resource_owner_id is None:
            return False
        # Token ids and row ids may differ in type (int vs str)
        return str(self.principal.id) == str(resource_owner_id)

    # ─── Enforcement ─────────────────────────────────────────────

    def require_role(self, role: str) -> None:
        if not self.has_role(role):
            raise AuthorizationError(
                f"Role '{role}' required",
                details={"requiredRole": role, "userRoles": sorted(self._roles())},
            )

    def require_permission(self, permission: str) -> None:
        if not self.has_permission(permission):
            raise AuthorizationError(
                f"Permission '{permission}' required",
                details={
                    "requiredPermission": permission,
                    "userPermissions": sorted(self._permissions()),
                },
            )

    def require_admin(self) -> None:
        if not self.is_admin():
            raise AuthorizationError("Administrator access required", "ADMIN_REQUIRED")

    def require_ownership(self, resource_owner_id: Any) -> None:
        if not self.is_owner(resource_owner_id) and not self.is_admin():
            raise AuthorizationError(
                "You can only access your own resources", "OWNERSHIP_REQUIRED",
            )

    def elapsed_ms(self) -> float:
        return round((self._clock() - self._request.start_time) * 1000, 3)


@dataclass(frozen=True)
class Capabilities:
    db: ScopedDataAccess
    cache: ScopedCache
    context: CallerContext
    util: type[Utilities]
    log: RequestLogger


class ExecutionContextBuilder:
    """Builds one Capabilities per invocation from shared, long-lived services."""

    def __init__(
        self, data_access: DataAccess, cache: CacheClient,
        slow_query_ms: float = 1000, default_ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._data = data_access
        self._cache = cache
        self._slow_query_ms = slow_query_ms
        self._default_ttl = default_ttl
        self._clock = clock

    def build(self, request: RequestContext) -> Capabilities:
        log = request_logger(
            logger,
            request_id=request.request_id,
            instance_id=request.instance_id,
            route_module=request.module,
            method=request.method,
            version=request.version,
            user_id=request.user_id,
        )
        return Capabilities(
            db=ScopedDataAccess(self._data, log, self._slow_query_ms),
            cache=ScopedCache(self._cache, self._default_ttl),
            context=CallerContext(request, self._clock),
            util=Utilities,
            log=log,
        )
