"""Module Registry: discovery, registration, resolution and reload of business modules.

Invariants:
    - At most one ModuleRecord per RouteKey (module name, version)
    - A user module displaces a core module with the same key; a core module never
      displaces a user module (skipped, logged at INFO)
    - Same-origin duplicates are rejected with a warning; the first registration wins
    - Callable, non-"_" attributes are methods; everything else is config or helpers
    - Unknown module and unknown method resolve to the same generic NotFoundError
    - Mutation replaces the whole mapping (copy-on-write): a request that already
      resolved a record keeps using it, even across reload()

A module source is any Python module (or object) exposing MODULE_CONFIG:

    MODULE_CONFIG = {
        "router_name": "catalog",
        "version": "v1",
        "auth_required": False,
        "rate_limit": "500/hour",
        "methods": {"create": {"auth_required": True, "roles": ["admin"]}},
    }
"""

import importlib
import importlib.util
import inspect
import logging
import pkgutil
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Iterator, Mapping

from autoregistry.core.domain_types import (
    MethodPolicy,
    ModuleMethod,
    ModuleRecord,
    ResolvedMethod,
    RouteKey,
)
from autoregistry.core.errors import ModuleRegistrationError, NotFoundError
from autoregistry.core.method_policy import (
    build_policy,
    is_route_name,
    merge_method_policy,
    module_defaults,
)

logger = logging.getLogger(__name__)

CONFIG_ATTRIBUTE = "MODULE_CONFIG"
DEFAULT_VERSION = "v1"
_FILE_MODULE_PREFIX = "autoregistry_modules_"


def iter_methods(source: Any) -> Iterator[tuple[str, ModuleMethod]]:
    """Yield (name, callable) for every routable attribute of a module source."""
    own_module = source.__name__ if isinstance(source, ModuleType) else None
    for name in dir(source):
        if not is_route_name(name):
            continue
        value = getattr(source, name)
        if not callable(value) or inspect.isclass(value):
            continue
        # Imported helpers are not routes of this module
        if own_module and getattr(value, "__module__", None) != own_module:
            continue
        yield name, value


def load_file(path: Path) -> ModuleType:
    name = f"{_FILE_MODULE_PREFIX}{path.stem}"
    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ModuleRegistrationError(f"Cannot load module source {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(name, None)
        raise
    return module


def _locator_of(source: Any) -> str:
    if isinstance(source, ModuleType):
        file = getattr(source, "__file__", None)
        if source.__name__.startswith(_FILE_MODULE_PREFIX) and file:
            return file
        return source.__name__
    return f"{type(source).__module__}.{getattr(source, '__name__', type(source).__name__)}"


def build_record(source: Any, is_core: bool, locator: str | None = None) -> ModuleRecord:
    """Validate a module source and freeze it into a ModuleRecord."""
    config = getattr(source, CONFIG_ATTRIBUTE, None)
    if not isinstance(config, Mapping):
        raise ModuleRegistrationError(f"Module source {source!r} has no {CONFIG_ATTRIBUTE}")
    router_name = config.get("router_name")
    if not router_name or not isinstance(router_name, str):
        raise ModuleRegistrationError(
            f"Module source {source!r} is missing required config field 'router_name'",
        )
    config = {
        **config,
        "version": config.get("version") or DEFAULT_VERSION,
        "auth_required": bool(config.get("auth_required", False)),
        "rate_limit": config.get("rate_limit") or None,
        "methods": dict(config.get("methods") or {}),
    }

    try:
        methods = dict(iter_methods(source))
        policy = {name: merge_method_policy(config, name) for name in methods}
        default_policy = build_policy(module_defaults(config))
    except ValueError as e:
        raise ModuleRegistrationError(f"Invalid policy in module '{router_name}': {e}") from e

    return ModuleRecord.build(
        route_key=RouteKey(router_name, config["version"]),
        is_core=is_core or bool(config.get("is_core", False)),
        methods=methods,
        policy=policy,
        default_policy=default_policy,
        source_locator=locator or _locator_of(source),
        source=source,
    )


class ModuleRegistry:
    """RouteKey -> ModuleRecord, owned by the application, passed by reference."""

    def __init__(self):
        self._records: dict[RouteKey, ModuleRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: RouteKey) -> bool:
        return key in self._records

    @property
    def records(self) -> list[ModuleRecord]:
        return list(self._records.values())

    # ─── Registration ────────────────────────────────────────────

    def register(
        self, source: Any, is_core: bool = False, locator: str | None = None,
    ) -> ModuleRecord | None:
        """Register a module source. Returns the stored record, or None if skipped.

        Raises ModuleRegistrationError when the source has no valid config.
        """
        record = build_record(source, is_core, locator)
        key = record.route_key
        existing = self._records.get(key)

        if existing is not None:
            if existing.is_core and not record.is_core:
                logger.info(f"User module {key} replaces core module")
            elif not existing.is_core and record.is_core:
                logger.info(f"Core module {key} skipped: user module already registered")
                return None
            else:
                logger.warning(
                    f"Duplicate {record.origin} module {key} rejected "
                    f"(kept {existing.source_locator})",
                )
                return None

        self._records = {**self._records, key: record}
        logger.info(
            f"Registered {record.origin} module {key} ({len(record.methods)} methods)",
        )
        return record

    def discover(self, path: str | Path, is_core: bool = False) -> int:
        """Register every *.py file in a directory. Returns modules registered."""
        directory = Path(path).resolve()
        if not directory.is_dir():
            logger.warning(f"Modules directory {directory} not found, nothing registered")
            return 0
        registered = 0
        for file in sorted(directory.glob("*.py")):
            if file.name.startswith("_"):
                continue
            try:
                source = load_file(file)
                if self.register(source, is_core=is_core, locator=str(file)):
                    registered += 1
            except Exception as e:
                logger.warning(f"Failed to register module {file}: {e}", exc_info=True)
        logger.info(f"Discovered {registered} modules in {directory}")
        return registered

    def discover_package(self, package: str, is_core: bool = True) -> int:
        """Register every submodule of an importable package."""
        root = importlib.import_module(package)
        registered = 0
        for info in pkgutil.iter_modules(getattr(root, "__path__", [])):
            if info.name.startswith("_"):
                continue
            name = f"{package}.{info.name}"
            try:
                source = importlib.import_module(name)
                if self.register(source, is_core=is_core, locator=name):
                    registered += 1
            except Exception as e:
                logger.warning(f"Failed to register module {name}: {e}", exc_info=True)
        return registered

    def reload(self, module: str, version: str = DEFAULT_VERSION) -> ModuleRecord:
        """Re-import one module's source and swap its record in a single step."""
        key = RouteKey(module, version)
        current = self._records.get(key)
        if current is None:
            raise NotFoundError(f"Module {module}@{version} not registered", "MODULE_NOT_FOUND")

        locator = current.source_locator
        if locator.endswith(".py"):
            source = load_file(Path(locator))
        elif isinstance(current.source, ModuleType):
            source = importlib.reload(current.source)
        else:
            source = current.source

        record = build_record(source, current.is_core, locator)
        if record.route_key != key:
            raise ModuleRegistrationError(
                f"Reloaded source for {key} now declares {record.route_key}",
            )
        self._records = {**self._records, key: record}
        logger.info(f"Reloaded module {key} ({len(record.methods)} methods)")
        return record

    # ─── Resolution ──────────────────────────────────────────────

    def get(self, module: str, version: str = DEFAULT_VERSION) -> ModuleRecord | None:
        return self._records.get(RouteKey(module, version))

    def resolve(self, module: str, method: str, version: str = DEFAULT_VERSION) -> ResolvedMethod:
        record = self._records.get(RouteKey(module, version))
        handler = record.methods.get(method) if record and is_route_name(method) else None
        if record is None or handler is None:
            raise NotFoundError(f"Route {module}.{method} not found", "ROUTE_NOT_FOUND")
        return ResolvedMethod(record, method, handler, record.policy[method])

    def is_method_allowed(self, module: str, method: str, version: str = DEFAULT_VERSION) -> bool:
        record = self._records.get(RouteKey(module, version))
        return bool(record and is_route_name(method) and method in record.methods)

    def get_method_config(
        self, module: str, method: str, version: str = DEFAULT_VERSION,
    ) -> MethodPolicy | None:
        record = self._records.get(RouteKey(module, version))
        if record is None or method not in record.policy:
            return None
        return record.policy[method]

    def module_info(self) -> dict:
        return {
            str(key): {
                "routerName": record.route_key.module,
                "version": record.route_key.version,
                "origin": record.origin,
                "defaults": record.default_policy.to_dict(),
                "methods": [
                    {"name": name, "policy": record.policy[name].to_dict()}
                    for name in sorted(record.methods)
                ],
            }
            for key, record in sorted(self._records.items())
        }
