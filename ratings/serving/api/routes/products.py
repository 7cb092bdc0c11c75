"""
Products API Endpoints

Product catalog with cached reads. Writes are admin-only.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ratings.catalog.service import ProductCatalogService
from ratings.reviews.records import ROLE_ADMIN, Actor
from ratings.reviews.schemas import PageResponse, ProductRequest, ProductResponse
from ratings.serving.api.dependencies import get_catalog_service, require_roles

router = APIRouter()


@router.get("", response_model=PageResponse[ProductResponse])
async def list_products(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_by: str = Query("name"),
    direction: str = Query("asc"),
    service: ProductCatalogService = Depends(get_catalog_service),
) -> PageResponse[ProductResponse]:
    return await service.list_products(page=page, page_size=page_size, sort_by=sort_by, direction=direction)


@router.get("/search", response_model=PageResponse[ProductResponse])
async def search_products(
    name: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_by: str = Query("name"),
    direction: str = Query("asc"),
    service: ProductCatalogService = Depends(get_catalog_service),
) -> PageResponse[ProductResponse]:
    """
    Flexible search.

    Examples:
    - /search?name=phone&category=electronics&min_price=100&max_price=500
    - /search?page=2&page_size=20&sort_by=price&direction=desc
    """
    return await service.search_products(
        name=name,
        category=category,
        min_price=min_price,
        max_price=max_price,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        direction=direction,
    )


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    service: ProductCatalogService = Depends(get_catalog_service),
) -> ProductResponse:
    """Product details including its rating aggregate."""
    return await service.get_product_by_id(product_id)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductRequest,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    service: ProductCatalogService = Depends(get_catalog_service),
) -> ProductResponse:
    return await service.create_product(body)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    body: ProductRequest,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    service: ProductCatalogService = Depends(get_catalog_service),
) -> ProductResponse:
    return await service.update_product(product_id, body)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    actor: Actor = Depends(require_roles(ROLE_ADMIN)),
    service: ProductCatalogService = Depends(get_catalog_service),
) -> Response:
    await service.delete_product(product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
