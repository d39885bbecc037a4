"""Autoregistry API: FastAPI application factory and entry point.

Invariants:
    - Routes registered explicitly; only business modules are discovered
    - Global error handlers map FrameworkError -> error envelope
    - CORS configured from settings (not hardcoded)
    - Building the app never connects: the store pool, cache client and module
      discovery happen in the lifespan, unless a Framework is injected

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - create_app(settings, framework) so tests wire their own store and cache
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autoregistry.api.error_handlers import register_error_handlers
from autoregistry.api.middleware import register_request_identity
from autoregistry.api.routes import health, info, modules
from autoregistry.config import Settings, get_settings
from autoregistry.framework import FRAMEWORK_VERSION, Framework
from autoregistry.infrastructure.observability import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_format)

    owned = getattr(app.state, "framework", None) is None
    if owned:
        app.state.framework = await Framework.connect(settings)
    framework: Framework = app.state.framework
    logger.info(
        f"Autoregistry API started: instance {framework.instance_id}, "
        f"{len(framework.registry)} modules",
    )
    yield
    logger.info("Autoregistry API shutting down")
    if owned:
        await framework.close()


def create_app(settings: Settings | None = None, framework: Framework | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Autoregistry API", version=FRAMEWORK_VERSION, lifespan=lifespan)
    app.state.settings = settings
    if framework is not None:
        app.state.framework = framework

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Instance-ID", "Retry-After"],
    )
    register_request_identity(app)

    # Operational routes before the catch-all module route
    app.include_router(health.router)
    app.include_router(info.router)
    app.include_router(modules.router)

    register_error_handlers(app)
    return app


app = create_app()
