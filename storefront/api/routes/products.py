from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from storefront.core.cache import get_cache_headers
from storefront.core.rate_limit import with_api_rate_limit
from storefront.schemas.product import Category, Product, ProductPage, ProductUpdate
from storefront.services.catalog_service import DEFAULT_PER_PAGE, MAX_PER_PAGE, CatalogService

router = APIRouter(tags=["Products"])


def get_catalog_service(request: Request) -> CatalogService:
    """FastAPI dependency returning the application's catalogue service."""
    return request.app.state.catalog_service


@router.get("/products", response_model=ProductPage)
@with_api_rate_limit
async def list_products(
    request: Request,
    category: str | None = Query(None, description="Category slug filter."),
    search: str | None = Query(None, max_length=100, description="Name/description search."),
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE),
    service: CatalogService = Depends(get_catalog_service),
) -> JSONResponse:
    """List active products with filters and pagination.

    Listings are cached per filter set for 10 minutes and carry a public
    Cache-Control header for the CDN.
    """
    result = await service.list_products(
        category=category,
        search=search,
        page=page,
        per_page=per_page,
    )
    return JSONResponse(
        content=jsonable_encoder(result),
        headers=get_cache_headers("products"),
    )


@router.get("/products/{product_id}", response_model=Product)
@with_api_rate_limit
async def get_product(
    request: Request,
    product_id: str,
    service: CatalogService = Depends(get_catalog_service),
) -> JSONResponse:
    """Fetch a single product (404 if unknown)."""
    product = await service.get_product(product_id)
    return JSONResponse(
        content=jsonable_encoder(product),
        headers=get_cache_headers("products"),
    )


@router.put("/products/{product_id}", response_model=Product)
@with_api_rate_limit
async def update_product(
    request: Request,
    product_id: str,
    changes: ProductUpdate,
    service: CatalogService = Depends(get_catalog_service),
) -> JSONResponse:
    """Update a product and invalidate its cached listings and detail."""
    product = await service.update_product(product_id, changes)
    return JSONResponse(
        content=jsonable_encoder(product),
        headers={"Cache-Control": "no-store"},
    )


@router.get("/categories", response_model=list[Category])
@with_api_rate_limit
async def list_categories(
    request: Request,
    service: CatalogService = Depends(get_catalog_service),
) -> JSONResponse:
    categories = await service.list_categories()
    return JSONResponse(
        content=jsonable_encoder(categories),
        headers=get_cache_headers("categories"),
    )
