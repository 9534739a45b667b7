"""Catalogue adapter layer - abstracts over the product store."""

from storefront.adapters.catalog.base import AbstractProductCatalog
from storefront.adapters.catalog.in_memory import InMemoryProductCatalog

__all__ = [
    "AbstractProductCatalog",
    "InMemoryProductCatalog",
]
