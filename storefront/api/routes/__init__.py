from __future__ import annotations

from storefront.api.routes.health import router as health_router
from storefront.api.routes.products import router as products_router

__all__ = ["health_router", "products_router"]
