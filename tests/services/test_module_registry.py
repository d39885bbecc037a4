"""Module Registry: registration defaults, conflict rules, resolution and reload.

Tests cover:
    - user replaces core on the same RouteKey; core after user is skipped
    - same-origin duplicates keep the first registration
    - private names and unknown methods resolve to one generic NotFoundError
    - reload swaps the record atomically; a resolved method keeps the old handler
    - discovery tolerates broken files and registers the rest
"""

import logging
from types import SimpleNamespace

import pytest

from autoregistry.core.domain_types import RateLimit, RouteKey
from autoregistry.core.errors import ModuleRegistrationError, NotFoundError
from autoregistry.services.module_registry import ModuleRegistry


def _module(name="orders", version=None, **config):
    """Module source built from plain callables, like a module file would be."""
    async def create(request, data, caps):
        return {"created": name}

    def _internal():
        return None

    cfg = {"router_name": name, **config}
    if version:
        cfg["version"] = version
    return SimpleNamespace(MODULE_CONFIG=cfg, create=create, _internal=_internal, LIMIT=5)


@pytest.fixture
def registry():
    return ModuleRegistry()


# ─── registration ────────────────────────────────────────────────

def test_defaults_applied(registry):
    record = registry.register(_module())
    assert record.route_key == RouteKey("orders", "v1")
    assert record.default_policy.auth_required is False
    assert record.default_policy.rate_limit is None
    assert set(record.methods) == {"create"}


def test_missing_router_name_rejected(registry):
    with pytest.raises(ModuleRegistrationError):
        registry.register(SimpleNamespace(MODULE_CONFIG={"version": "v1"}))
    with pytest.raises(ModuleRegistrationError):
        registry.register(SimpleNamespace(create=lambda r, d, c: None))


def test_invalid_rate_limit_rejected_at_registration(registry):
    with pytest.raises(ModuleRegistrationError):
        registry.register(_module(rate_limit="lots/hour"))


def test_rate_limit_typed_at_registration(registry):
    record = registry.register(_module(rate_limit="10/second"))
    assert record.policy["create"].rate_limit == RateLimit(10, 1)


# ─── conflict rules ──────────────────────────────────────────────

def test_user_module_replaces_core(registry):
    """Scenario: (orders, v1) registered as core, then as user -> user wins."""
    core, user = _module(), _module()
    registry.register(core, is_core=True)
    registry.register(user, is_core=False)

    resolved = registry.resolve("orders", "create", "v1")
    assert resolved.handler is user.create
    assert resolved.record.origin == "user"


def test_core_after_user_is_skipped(registry, caplog):
    core, user = _module(), _module()
    registry.register(user, is_core=False)
    with caplog.at_level(logging.INFO):
        assert registry.register(core, is_core=True) is None

    assert registry.resolve("orders", "create").handler is user.create
    assert any("skipped" in r.getMessage() for r in caplog.records)


def test_same_origin_duplicate_keeps_first(registry, caplog):
    first, second = _module(), _module()
    registry.register(first)
    with caplog.at_level(logging.WARNING):
        assert registry.register(second) is None

    assert registry.resolve("orders", "create").handler is first.create
    assert any(r.levelno == logging.WARNING for r in caplog.records)


def test_versions_are_separate_keys(registry):
    registry.register(_module(version="v1"))
    registry.register(_module(version="v2"))
    assert len(registry) == 2


def test_is_core_from_config(registry):
    record = registry.register(_module(is_core=True))
    assert record.is_core is True


# ─── resolution ──────────────────────────────────────────────────

@pytest.mark.parametrize("module,method", [
    ("orders", "missing"),
    ("orders", "_internal"),
    ("orders", "LIMIT"),
    ("nowhere", "create"),
])
def test_unknown_routes_are_generic_not_found(registry, module, method):
    registry.register(_module())
    with pytest.raises(NotFoundError) as exc_info:
        registry.resolve(module, method, "v1")
    assert exc_info.value.code == "ROUTE_NOT_FOUND"
    assert exc_info.value.message == f"Route {module}.{method} not found"


def test_method_config_and_allowed(registry):
    registry.register(_module(auth_required=True, methods={"create": {"public": True}}))
    assert registry.is_method_allowed("orders", "create")
    assert not registry.is_method_allowed("orders", "_internal")
    assert registry.get_method_config("orders", "create").public is True
    assert registry.get_method_config("orders", "nope") is None


def test_module_info_lists_policies(registry):
    registry.register(_module(auth_required=True), is_core=True)
    info = registry.module_info()
    entry = info["orders:v1"]
    assert entry["origin"] == "core"
    assert [m["name"] for m in entry["methods"]] == ["create"]
    assert entry["methods"][0]["policy"]["authRequired"] is True


# ─── reload & discovery ──────────────────────────────────────────

MODULE_V1 = '''
MODULE_CONFIG = {"router_name": "inventory", "auth_required": False}

def count(request, data, caps):
    return 1
'''

MODULE_V2 = '''
MODULE_CONFIG = {"router_name": "inventory", "auth_required": True}

def count(request, data, caps):
    return 2

def restock(request, data, caps):
    return "ok"
'''


def test_reload_swaps_record_atomically(registry, tmp_path):
    source = tmp_path / "inventory.py"
    source.write_text(MODULE_V1)
    assert registry.discover(tmp_path) == 1
    in_flight = registry.resolve("inventory", "count")

    source.write_text(MODULE_V2)
    record = registry.reload("inventory", "v1")

    assert set(record.methods) == {"count", "restock"}
    assert registry.resolve("inventory", "count").handler(None, {}, None) == 2
    assert registry.get_method_config("inventory", "count").auth_required is True
    # A request that resolved before the reload still runs the old code
    assert in_flight.handler(None, {}, None) == 1


def test_reload_unknown_module(registry):
    with pytest.raises(NotFoundError):
        registry.reload("absent")


def test_reload_failure_keeps_old_record(registry, tmp_path):
    source = tmp_path / "inventory.py"
    source.write_text(MODULE_V1)
    registry.discover(tmp_path)
    source.write_text("MODULE_CONFIG = {'router_name': 'inventory'\n")

    with pytest.raises(SyntaxError):
        registry.reload("inventory")
    assert registry.resolve("inventory", "count").handler(None, {}, None) == 1


def test_discover_skips_broken_and_private_files(registry, tmp_path):
    (tmp_path / "inventory.py").write_text(MODULE_V1)
    (tmp_path / "broken.py").write_text("raise RuntimeError('import failure')\n")
    (tmp_path / "noconfig.py").write_text("def x(request, data, caps):\n    return 1\n")
    (tmp_path / "_shared.py").write_text("MODULE_CONFIG = {'router_name': 'shared'}\n")

    assert registry.discover(tmp_path) == 1
    assert registry.get("inventory") is not None
    assert registry.get("shared") is None


def test_discover_missing_directory(registry, tmp_path):
    assert registry.discover(tmp_path / "absent") == 0


def test_discover_file_module_ignores_imported_callables(registry, tmp_path):
    (tmp_path / "mixed.py").write_text(
        "from autoregistry.core.utilities import now_iso\n"
        "MODULE_CONFIG = {'router_name': 'mixed'}\n"
        "def stamp(request, data, caps):\n    return now_iso()\n"
    )
    registry.discover(tmp_path)
    assert set(registry.get("mixed").methods) == {"stamp"}


def test_discover_package_registers_core_modules(registry):
    assert registry.discover_package("autoregistry.modules") == 1
    record = registry.get("status")
    assert record.is_core is True
    assert registry.get_method_config("status", "ping").public is True
    assert registry.get_method_config("status", "whoami").auth_required is True
