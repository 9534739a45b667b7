from abc import ABC, abstractmethod

from storefront.schemas.product import Category, Product, ProductUpdate


class AbstractProductCatalog(ABC):
	"""Interface for the product store backing the storefront."""

	@abstractmethod
	async def list_products(
		self,
		*,
		category: str | None = None,
		search: str | None = None,
		offset: int = 0,
		limit: int = 10,
	) -> tuple[list[Product], int]:
		"""Return one page of active products and the total match count.

		Args:
			category: Optional category slug filter.
			search: Optional case-insensitive name/description filter.
			offset: Number of matching products to skip.
			limit: Maximum products to return.

		Returns:
			tuple[list[Product], int]: The page and the total number of matches.
		"""
		...

	@abstractmethod
	async def get_product(self, product_id: str) -> Product | None:
		"""Return the product or None if it does not exist."""
		...

	@abstractmethod
	async def update_product(self, product_id: str, changes: ProductUpdate) -> Product | None:
		"""Apply ``changes`` and return the updated product, or None if missing."""
		...

	@abstractmethod
	async def list_categories(self) -> list[Category]:
		...
