"""Method Policy Resolution: merge module defaults with per-method overrides.

Invariants:
    - Pure: no IO, no registry access
    - Module defaults apply first; any field present in the method override wins
    - `public` exists only at method level and defaults to False
    - Method names starting with "_" are never routes
"""

from typing import Any, Iterable, Mapping

from autoregistry.core.domain_types import MethodPolicy
from autoregistry.core.rate_limit import parse_rate_limit

PRIVATE_PREFIX = "_"

_POLICY_FIELDS = ("auth_required", "rate_limit", "roles", "permissions")


def is_route_name(name: str) -> bool:
    return bool(name) and not name.startswith(PRIVATE_PREFIX)


def _as_set(value: str | Iterable[str] | None) -> frozenset[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    result = frozenset(str(v) for v in value)
    return result or None


def build_policy(fields: Mapping[str, Any], public: bool = False) -> MethodPolicy:
    return MethodPolicy(
        auth_required=bool(fields.get("auth_required", False)),
        public=public,
        roles=_as_set(fields.get("roles")),
        rate_limit=parse_rate_limit(fields.get("rate_limit")),
        permissions=_as_set(fields.get("permissions")),
    )


def module_defaults(config: Mapping[str, Any]) -> dict[str, Any]:
    return {name: config.get(name) for name in _POLICY_FIELDS}


def merge_method_policy(
    config: Mapping[str, Any], method_name: str,
) -> MethodPolicy:
    """Effective policy for one method of a module config."""
    merged = module_defaults(config)
    override = (config.get("methods") or {}).get(method_name) or {}
    for name in _POLICY_FIELDS:
        if name in override:
            merged[name] = override[name]
    return build_policy(merged, public=override.get("public") is True)
