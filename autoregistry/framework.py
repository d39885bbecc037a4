"""Framework Container: every long-lived collaborator, built once by the entry point.

Invariants:
    - Exactly one Framework per application, stored on app.state.framework
    - No module-level singletons: routes reach collaborators only through this object
    - Building never connects; connect() opens the cache and the pool, close() releases both
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from autoregistry.config import Settings
from autoregistry.infrastructure.auth import TokenVerifier
from autoregistry.infrastructure.cache import CacheClient
from autoregistry.infrastructure.database import DataAccess
from autoregistry.services.dispatch import ModuleDispatcher
from autoregistry.services.error_monitor import ErrorMonitor
from autoregistry.services.execution_context import ExecutionContextBuilder
from autoregistry.services.module_registry import ModuleRegistry
from autoregistry.services.request_pipeline import RequestPipeline

logger = logging.getLogger(__name__)

FRAMEWORK_NAME = "autoregistry"
FRAMEWORK_VERSION = "1.0.0"


def new_instance_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class Framework:
    settings: Settings
    registry: ModuleRegistry
    data_access: DataAccess
    cache: CacheClient
    verifier: TokenVerifier
    pipeline: RequestPipeline
    monitor: ErrorMonitor
    dispatcher: ModuleDispatcher
    clock: Callable[[], float] = time.monotonic
    instance_id: str = field(default_factory=new_instance_id)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self._started_monotonic = self.clock()

    @classmethod
    def build(
        cls,
        settings: Settings,
        data_access: DataAccess,
        registry: ModuleRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Framework":
        """Wire collaborators around an existing DataAccess (and its cache)."""
        registry = registry or ModuleRegistry()
        cache = data_access.cache
        verifier = TokenVerifier(settings.jwt_secret, settings.jwt_algorithm)
        monitor = ErrorMonitor(
            warning_threshold=settings.error_warning_threshold,
            critical_threshold=settings.error_critical_threshold,
            slow_ms=settings.slow_request_ms,
            expose_details=not settings.is_production,
        )
        builder = ExecutionContextBuilder(
            data_access, cache,
            slow_query_ms=settings.slow_request_ms,
            default_ttl=settings.cache_default_ttl_seconds,
            clock=clock,
        )
        return cls(
            settings=settings,
            registry=registry,
            data_access=data_access,
            cache=cache,
            verifier=verifier,
            pipeline=RequestPipeline(registry, verifier, settings.supported_versions, clock),
            monitor=monitor,
            dispatcher=ModuleDispatcher(builder, monitor),
            clock=clock,
        )

    @classmethod
    async def connect(cls, settings: Settings) -> "Framework":
        cache = await CacheClient.connect(settings)
        framework = cls.build(settings, DataAccess.from_settings(settings, cache))
        framework.discover_modules()
        return framework

    def discover_modules(self) -> int:
        """Core package first, then the user directory (user modules override core)."""
        core = self.registry.discover_package(self.settings.core_modules_package, is_core=True)
        user = 0
        if self.settings.modules_path:
            user = self.registry.discover(self.settings.modules_path, is_core=False)
        logger.info(f"Module discovery complete: {core} core, {user} user")
        return core + user

    @property
    def uptime_seconds(self) -> float:
        return round(self.clock() - self._started_monotonic, 3)

    @property
    def pid(self) -> int:
        return os.getpid()

    async def close(self) -> None:
        await self.data_access.close()
        logger.info(f"Framework instance {self.instance_id} closed")
