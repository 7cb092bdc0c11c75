"""
Product Catalog Service

Product CRUD plus the cached product read paths (by id, list, search).
The rating aggregate columns are read here but only written by the
RatingAggregator.
"""

import uuid
from decimal import Decimal
from typing import Optional

import structlog

from ratings.config.settings import RatingsSettings
from ratings.reviews.coherence import CacheCoherenceManager, CacheDomain, WriteEvent
from ratings.reviews.errors import NotFound, ValidationError
from ratings.reviews.records import PageRequest, ProductPage, ProductRecord
from ratings.reviews.schemas import PageResponse, ProductRequest, ProductResponse
from ratings.reviews.stores import ProductStore

logger = structlog.get_logger(__name__)

PRODUCT_SORTS = ("name", "price", "category", "created_at", "average_rating", "total_reviews")


def _to_response(product: ProductRecord) -> ProductResponse:
    return ProductResponse.model_validate(product)


class ProductCatalogService:
    """Products and their cached read paths"""

    def __init__(
        self,
        product_store: ProductStore,
        coherence: CacheCoherenceManager,
        settings: Optional[RatingsSettings] = None,
    ):
        self.settings = settings or RatingsSettings()
        self._products = product_store
        self._coherence = coherence

    async def create_product(self, request: ProductRequest) -> ProductResponse:
        saved = await self._products.insert(
            ProductRecord(
                id=str(uuid.uuid4()),
                name=request.name,
                description=request.description,
                category=request.category,
                price=request.price,
                image_url=request.image_url,
            )
        )
        logger.info("Created product", product_id=saved.id)
        await self._coherence.evict_for(WriteEvent.PRODUCT_CREATED, saved.id)
        return _to_response(saved)

    async def update_product(self, product_id: str, request: ProductRequest) -> ProductResponse:
        saved = await self._products.update(
            product_id,
            name=request.name,
            description=request.description,
            category=request.category,
            price=request.price,
            image_url=request.image_url,
        )
        if saved is None:
            raise NotFound.for_entity("Product", product_id)
        logger.info("Updated product", product_id=product_id)
        await self._coherence.evict_for(WriteEvent.PRODUCT_UPDATED, product_id)
        return _to_response(saved)

    async def delete_product(self, product_id: str) -> None:
        """Delete a product together with its reviews."""
        if not await self._products.delete(product_id):
            raise NotFound.for_entity("Product", product_id)
        logger.info("Deleted product", product_id=product_id)
        await self._coherence.evict_for(WriteEvent.PRODUCT_DELETED, product_id)

    async def get_product_by_id(self, product_id: str) -> ProductResponse:
        async def load() -> ProductResponse:
            logger.debug("Fetching product from store", product_id=product_id)
            product = await self._products.find_by_id(product_id)
            if product is None:
                raise NotFound.for_entity("Product", product_id)
            return _to_response(product)

        return await self._coherence.read_through(
            CacheDomain.PRODUCTS, {"id": product_id}, load, ProductResponse
        )

    async def list_products(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        sort_by: str = "name",
        direction: str = "asc",
    ) -> PageResponse[ProductResponse]:
        request = self._page_request(page, page_size, sort_by, direction)

        async def load() -> PageResponse[ProductResponse]:
            logger.debug("Fetching product list from store", page=request.page, size=request.page_size)
            return self._to_page(await self._products.list(request), request)

        params = {
            "page": request.page,
            "size": request.page_size,
            "sort": request.sort_by,
            "direction": request.direction,
        }
        return await self._coherence.read_through(
            CacheDomain.PRODUCT_LIST, params, load, PageResponse[ProductResponse]
        )

    async def search_products(
        self,
        name: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        sort_by: str = "name",
        direction: str = "asc",
    ) -> PageResponse[ProductResponse]:
        """
        Case-insensitive partial match on name and category, inclusive price
        bounds. Filters left as None are not applied.
        """
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError(
                "min_price must not exceed max_price",
                detail={"min_price": str(min_price), "max_price": str(max_price)},
            )
        request = self._page_request(page, page_size, sort_by, direction)

        async def load() -> PageResponse[ProductResponse]:
            logger.debug(
                "Searching products in store",
                name=name,
                category=category,
                min_price=min_price,
                max_price=max_price,
            )
            found = await self._products.search(name, category, min_price, max_price, request)
            return self._to_page(found, request)

        params = {
            "name": name,
            "category": category,
            "min_price": min_price,
            "max_price": max_price,
            "page": request.page,
            "size": request.page_size,
            "sort": request.sort_by,
            "direction": request.direction,
        }
        return await self._coherence.read_through(
            CacheDomain.PRODUCT_SEARCH, params, load, PageResponse[ProductResponse]
        )

    def _page_request(
        self, page: int, page_size: Optional[int], sort_by: str, direction: str
    ) -> PageRequest:
        return PageRequest.of(
            page,
            page_size or self.settings.default_page_size,
            sort_by,
            direction,
            allowed_sorts=PRODUCT_SORTS,
            max_page_size=self.settings.max_page_size,
        )

    @staticmethod
    def _to_page(found: ProductPage, request: PageRequest) -> PageResponse[ProductResponse]:
        return PageResponse[ProductResponse].build(
            [_to_response(p) for p in found.items],
            total=found.total,
            page=request.page,
            page_size=request.page_size,
        )
