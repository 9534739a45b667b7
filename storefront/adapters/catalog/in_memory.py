"""In-memory product catalogue.

Stands in for the document database in development and tests. Every call
bumps ``reads`` / ``writes`` so tests can tell cache hits from store hits.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Iterable

from storefront.adapters.catalog.base import AbstractProductCatalog
from storefront.schemas.product import Category, Product, ProductUpdate

DEFAULT_CATEGORIES = [
    Category(slug="shoes", name="Shoes"),
    Category(slug="bags", name="Bags"),
    Category(slug="accessories", name="Accessories"),
]

DEFAULT_PRODUCTS = [
    Product(id="p-100", name="Trail Runner", description="Lightweight trail shoe", price=89.9, stock=12, category="shoes"),
    Product(id="p-101", name="City Sneaker", description="Everyday leather sneaker", price=74.5, stock=30, category="shoes"),
    Product(id="p-200", name="Weekender Bag", description="Canvas travel bag", price=120.0, stock=5, category="bags"),
    Product(id="p-201", name="Laptop Sleeve", description="Padded 14 inch sleeve", price=35.0, stock=0, category="bags"),
    Product(id="p-300", name="Wool Scarf", description="Merino wool scarf", price=29.0, stock=40, category="accessories"),
    Product(id="p-301", name="Leather Belt", description="Full grain belt", price=45.0, stock=18, category="accessories", is_active=False),
]


class InMemoryProductCatalog(AbstractProductCatalog):
    """Thread-safe dict-backed catalogue with an optional artificial latency."""

    def __init__(
        self,
        products: Iterable[Product] | None = None,
        categories: Iterable[Category] | None = None,
        *,
        latency_seconds: float = 0.0,
    ) -> None:
        seed = DEFAULT_PRODUCTS if products is None else products
        self._products: dict[str, Product] = {p.id: p.model_copy() for p in seed}
        self._categories = list(DEFAULT_CATEGORIES if categories is None else categories)
        self._latency_seconds = latency_seconds
        self._lock = threading.Lock()
        self.reads = 0
        self.writes = 0

    async def _simulate_io(self) -> None:
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)

    async def list_products(
        self,
        *,
        category: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Product], int]:
        await self._simulate_io()
        needle = search.lower() if search else None
        with self._lock:
            self.reads += 1
            matches = [
                p for p in self._products.values()
                if p.is_active
                and (category is None or p.category == category)
                and (needle is None or needle in p.name.lower() or needle in p.description.lower())
            ]
        matches.sort(key=lambda p: p.id)
        return matches[offset:offset + limit], len(matches)

    async def get_product(self, product_id: str) -> Product | None:
        await self._simulate_io()
        with self._lock:
            self.reads += 1
            product = self._products.get(product_id)
            return product.model_copy() if product else None

    async def update_product(self, product_id: str, changes: ProductUpdate) -> Product | None:
        await self._simulate_io()
        with self._lock:
            current = self._products.get(product_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes.model_dump(exclude_unset=True, exclude_none=True))
            self._products[product_id] = updated
            self.writes += 1
            return updated.model_copy()

    async def list_categories(self) -> list[Category]:
        await self._simulate_io()
        with self._lock:
            self.reads += 1
            return list(self._categories)
