"""Catalogue service combining the product store with the read cache.

Reads go through ``get_or_set`` on the ``products`` and ``categories``
namespaces; writes go to the store first and then invalidate every cached
entry derived from the changed product.
"""

import logging
import math

from storefront.adapters.catalog.base import AbstractProductCatalog
from storefront.core.cache import (
    CACHE_DURATIONS,
    PRODUCT_DETAIL_PREFIX,
    PRODUCT_LIST_PREFIX,
    CacheRegistry,
    invalidate_product,
)
from storefront.core.errors import NotFoundAppError, ValidationAppError
from storefront.schemas.product import Category, Product, ProductPage, ProductUpdate
from storefront.utils.bounded_cache import build_cache_key

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 50


class CatalogService:
    """Cached read/write access to products and categories."""

    def __init__(self, catalog: AbstractProductCatalog, caches: CacheRegistry) -> None:
        self._catalog = catalog
        self._caches = caches

    async def list_products(
        self,
        *,
        category: str | None = None,
        search: str | None = None,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
    ) -> ProductPage:
        """Return one page of active products, cached per filter set.

        Raises:
            ValidationAppError: If paging parameters are out of range.
        """
        if page < 1:
            raise ValidationAppError(code="invalid_page", message="page must be >= 1")
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise ValidationAppError(
                code="invalid_per_page",
                message=f"per_page must be between 1 and {MAX_PER_PAGE}",
            )

        search = search.strip() if search else None
        params = {"page": page, "per_page": per_page}
        if category:
            params["category"] = category
        if search:
            params["search"] = search.lower()
        key = build_cache_key(PRODUCT_LIST_PREFIX, params)

        async def _load() -> ProductPage:
            products, total = await self._catalog.list_products(
                category=category,
                search=search,
                offset=(page - 1) * per_page,
                limit=per_page,
            )
            return ProductPage(
                products=products,
                total=total,
                page=page,
                per_page=per_page,
                total_pages=math.ceil(total / per_page),
            )

        return await self._caches.named_cache("products").get_or_set(
            key, _load, CACHE_DURATIONS["products"]
        )

    async def get_product(self, product_id: str) -> Product:
        key = build_cache_key(PRODUCT_DETAIL_PREFIX, {"id": product_id})

        async def _load() -> Product | None:
            return await self._catalog.get_product(product_id)

        product = await self._caches.named_cache("products").get_or_set(
            key, _load, CACHE_DURATIONS["single_product"]
        )
        if product is None:
            # Unknown ids are not worth a slot in a small namespace
            self._caches.named_cache("products").delete(key)
            raise NotFoundAppError(
                code="product_not_found",
                message="Product not found",
                details={"product_id": product_id},
            )
        return product

    async def update_product(self, product_id: str, changes: ProductUpdate) -> Product:
        updated = await self._catalog.update_product(product_id, changes)
        if updated is None:
            raise NotFoundAppError(
                code="product_not_found",
                message="Product not found",
                details={"product_id": product_id},
            )
        removed = invalidate_product(self._caches, product_id)
        logger.info(
            "catalog.product_updated",
            extra={"product_id": product_id, "cache_entries_removed": removed},
        )
        return updated

    async def list_categories(self) -> list[Category]:
        return await self._caches.named_cache("categories").get_or_set(
            build_cache_key("categories"),
            self._catalog.list_categories,
            CACHE_DURATIONS["categories"],
        )
