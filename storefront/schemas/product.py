"""Pydantic schemas for catalogue responses."""

from pydantic import BaseModel, Field


class Product(BaseModel):
    """A product as exposed by the storefront API."""

    id: str = Field(..., description="Stable product identifier.")
    name: str = Field(..., min_length=1, description="Display name.")
    description: str = Field("", description="Long description.")
    price: float = Field(..., ge=0, description="Unit price in the shop currency.")
    stock: int = Field(0, ge=0, description="Units available.")
    category: str = Field(..., description="Category slug.")
    is_active: bool = Field(True, description="Inactive products are hidden from listings.")


class ProductUpdate(BaseModel):
    """Partial update of a product; omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1)
    description: str | None = None
    price: float | None = Field(None, ge=0)
    stock: int | None = Field(None, ge=0)
    category: str | None = None
    is_active: bool | None = None


class ProductPage(BaseModel):
    """One page of a product listing."""

    products: list[Product] = Field(default_factory=list)
    total: int = Field(..., ge=0, description="Products matching the filters.")
    page: int = Field(..., ge=1)
    per_page: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=0)


class Category(BaseModel):
    slug: str
    name: str
