"""Domain Types: value objects shared by the registry, the pipeline and module code.

Invariants:
    - RouteKey is (module, version); one registered module per key
    - MethodPolicy is resolved once per registration, never per request
    - RateLimit is typed at configuration-load time ("100/hour" never reaches a request)
    - RequestContext is created at pipeline entry and never shared across requests
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, NamedTuple


class RouteKey(NamedTuple):
    module: str
    version: str

    def __str__(self) -> str:
        return f"{self.module}:{self.version}"


@dataclass(frozen=True)
class RateLimit:
    """Threshold of `count` calls per `window_seconds`."""
    count: int
    window_seconds: int

    def __str__(self) -> str:
        return f"{self.count}/{self.window_seconds}s"


@dataclass(frozen=True)
class MethodPolicy:
    auth_required: bool = False
    public: bool = False
    roles: frozenset[str] | None = None
    rate_limit: RateLimit | None = None
    permissions: frozenset[str] | None = None

    def to_dict(self) -> dict:
        return {
            "authRequired": self.auth_required,
            "public": self.public,
            "roles": sorted(self.roles) if self.roles else None,
            "rateLimit": (
                {"count": self.rate_limit.count, "windowSeconds": self.rate_limit.window_seconds}
                if self.rate_limit else None
            ),
            "permissions": sorted(self.permissions) if self.permissions else None,
        }


@dataclass(frozen=True)
class Principal:
    """Authenticated caller decoded from a bearer token."""
    id: Any
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    claims: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "roles": list(self.roles),
            "permissions": list(self.permissions),
        }


# Business methods: (request, data, capabilities) -> result
ModuleMethod = Callable[..., Any | Awaitable[Any]]


@dataclass(frozen=True)
class ModuleRecord:
    """One registered module. Replaced wholesale on reload, never mutated."""
    route_key: RouteKey
    is_core: bool
    methods: Mapping[str, ModuleMethod]
    policy: Mapping[str, MethodPolicy]
    default_policy: MethodPolicy
    source_locator: str
    source: Any = None

    @classmethod
    def build(cls, **kwargs) -> "ModuleRecord":
        kwargs["methods"] = MappingProxyType(dict(kwargs["methods"]))
        kwargs["policy"] = MappingProxyType(dict(kwargs["policy"]))
        return cls(**kwargs)

    @property
    def origin(self) -> str:
        return "core" if self.is_core else "user"


@dataclass(frozen=True)
class ResolvedMethod:
    record: ModuleRecord
    name: str
    handler: ModuleMethod
    policy: MethodPolicy


@dataclass
class RequestContext:
    """Per-request state threaded through every gate and into module code."""
    request_id: str
    instance_id: str
    start_time: float
    http_method: str = "GET"
    module: str | None = None
    method: str | None = None
    version: str | None = None
    principal: Principal | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    raw_input: Any = None
    data: dict = field(default_factory=dict)
    resolved: ResolvedMethod | None = None

    @property
    def user_id(self) -> Any:
        return self.principal.id if self.principal else None

    @property
    def route_label(self) -> str:
        return f"{self.module}.{self.method}"
