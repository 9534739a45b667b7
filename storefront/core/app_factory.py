from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (services, middleware, handlers, routers) so
tests can build isolated apps with their own limits, clocks and catalogue.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from storefront.adapters.catalog.base import AbstractProductCatalog
from storefront.adapters.catalog.in_memory import InMemoryProductCatalog
from storefront.api.routes import health_router, products_router
from storefront.core.config import Settings, settings
from storefront.core.exception_handlers import setup_exception_handlers
from storefront.core.logging import configure_logging
from storefront.core.middleware import request_id_middleware
from storefront.core.services import GuardServices
from storefront.services.catalog_service import CatalogService


def create_app(
    cfg: Settings | None = None,
    *,
    services: GuardServices | None = None,
    catalog: AbstractProductCatalog | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Throttle and cache state is created here, owned by the returned app, and
    torn down by its lifespan handler.

    Args:
        cfg: Settings to build from; defaults to the global settings.
        services: Pre-built services (tests inject clocks/limits this way).
        catalog: Product store; defaults to the in-memory catalogue.

    Returns:
        Configured FastAPI app with services, middleware, handlers and routers.
    """
    cfg = cfg or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    guard_services = services or GuardServices.from_settings(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await guard_services.start()
        try:
            yield
        finally:
            await guard_services.aclose()

    app = FastAPI(
        title=cfg.app.name,
        description=(
            "Storefront API with per-client sliding-window rate limiting and "
            "bounded in-process caches for catalogue reads."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )

    app.state.services = guard_services
    app.state.catalog_service = CatalogService(
        catalog or InMemoryProductCatalog(),
        guard_services.caches,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(products_router, prefix="/v1")
    app.include_router(health_router)

    return app
