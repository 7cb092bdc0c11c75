"""
Test Suite Configuration

In-memory stand-ins for the three collaborators (review store, product store,
cache backend) plus ready-wired services. Every fake call yields to the event
loop once so concurrent tests interleave the way real I/O would.
"""
import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from ratings.catalog.service import ProductCatalogService
from ratings.config.settings import CacheSettings, RatingsSettings
from ratings.database.connection import build_session_factory, create_schema
from ratings.database.models import ReviewStatus
from ratings.reviews.coherence import CacheCoherenceManager, domain_ttls
from ratings.reviews.errors import CacheUnavailable, DuplicateReview, StoreUnavailable
from ratings.reviews.records import (
    ROLE_ADMIN,
    ROLE_MODERATOR,
    ROLE_USER,
    Actor,
    PageRequest,
    ProductPage,
    ProductRecord,
    ReviewPage,
    ReviewRecord,
)
from ratings.reviews.service import ReviewLifecycleService


class FakeReviewStore:
    """ReviewStore kept in a dict; the (product, user) pair is unique like the real table."""

    def __init__(self):
        self.reviews: Dict[str, ReviewRecord] = {}
        self.failing: Set[str] = set()
        self.writes: List[str] = []

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        if operation in self.failing:
            raise StoreUnavailable(f"review.{operation} failed")

    async def find_by_id(self, review_id: str) -> Optional[ReviewRecord]:
        await self._enter("find_by_id")
        review = self.reviews.get(review_id)
        return replace(review) if review else None

    async def find_by_product_and_status(self, product_id, status, sort_by="created_at", descending=True):
        await self._enter("find_by_product_and_status")
        found = [
            replace(r) for r in self.reviews.values()
            if r.product_id == product_id and r.status == status
        ]
        return sorted(found, key=lambda r: (getattr(r, sort_by), r.id), reverse=descending)

    async def page_by_product_and_status(self, product_id, status, page: PageRequest) -> ReviewPage:
        await self._enter("page_by_product_and_status")
        found = [
            replace(r) for r in self.reviews.values()
            if r.product_id == product_id and r.status == status
        ]
        ordered = sorted(found, key=lambda r: (getattr(r, page.sort_by), r.id), reverse=page.descending)
        return ReviewPage(items=ordered[page.offset:page.offset + page.page_size], total=len(found))

    async def find_by_user(self, user_id, status=None):
        await self._enter("find_by_user")
        found = [
            replace(r) for r in self.reviews.values()
            if r.user_id == user_id and (status is None or r.status == status)
        ]
        return sorted(found, key=lambda r: (r.created_at, r.id), reverse=True)

    async def exists_by_product_and_user(self, product_id, user_id) -> bool:
        await self._enter("exists_by_product_and_user")
        return any(r.product_id == product_id and r.user_id == user_id for r in self.reviews.values())

    async def insert(self, review: ReviewRecord) -> ReviewRecord:
        await self._enter("insert")
        if any(
            r.product_id == review.product_id and r.user_id == review.user_id
            for r in self.reviews.values()
        ):
            raise DuplicateReview("You have already reviewed this product.")
        self.reviews[review.id] = replace(review)
        self.writes.append("insert")
        return replace(review)

    async def update(self, review: ReviewRecord, expected_status=None) -> Optional[ReviewRecord]:
        await self._enter("update")
        current = self.reviews.get(review.id)
        if current is None or (expected_status is not None and current.status != expected_status):
            return None
        self.reviews[review.id] = replace(review)
        self.writes.append("update")
        return replace(review)

    async def delete(self, review_id: str) -> bool:
        await self._enter("delete")
        self.writes.append("delete")
        return self.reviews.pop(review_id, None) is not None

    def seed(
        self,
        product_id: str,
        user_id: str,
        rating: int,
        status: ReviewStatus = ReviewStatus.PENDING,
        minutes_ago: int = 0,
    ) -> ReviewRecord:
        at = datetime(2025, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
        review = ReviewRecord(
            id=f"r-{product_id}-{user_id}",
            product_id=product_id,
            user_id=user_id,
            rating=rating,
            comment=f"{user_id} says {rating}",
            status=status,
            created_at=at,
            updated_at=at,
        )
        self.reviews[review.id] = review
        return review


class FakeProductStore:
    """ProductStore kept in a dict, with compare-and-set on aggregate_version."""

    def __init__(self):
        self.products: Dict[str, ProductRecord] = {}
        self.failing: Set[str] = set()
        self.aggregate_writes = 0
        self.forced_conflicts = 0

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(0)
        if operation in self.failing:
            raise StoreUnavailable(f"product.{operation} failed")

    async def find_by_id(self, product_id: str) -> Optional[ProductRecord]:
        await self._enter("find_by_id")
        product = self.products.get(product_id)
        return replace(product) if product else None

    async def update_aggregate(self, product_id, average_rating, total_reviews, expected_version) -> bool:
        await self._enter("update_aggregate")
        if self.forced_conflicts > 0:
            self.forced_conflicts -= 1
            return False
        product = self.products.get(product_id)
        if product is None or product.aggregate_version != expected_version:
            return False
        product.average_rating = average_rating
        product.total_reviews = total_reviews
        product.aggregate_version = expected_version + 1
        self.aggregate_writes += 1
        return True

    async def insert(self, product: ProductRecord) -> ProductRecord:
        await self._enter("insert")
        self.products[product.id] = replace(product)
        return replace(product)

    async def update(self, product_id: str, **fields: Any) -> Optional[ProductRecord]:
        await self._enter("update")
        product = self.products.get(product_id)
        if product is None:
            return None
        for name, value in fields.items():
            setattr(product, name, value)
        return replace(product)

    async def delete(self, product_id: str) -> bool:
        await self._enter("delete")
        return self.products.pop(product_id, None) is not None

    async def list(self, page: PageRequest) -> ProductPage:
        await self._enter("list")
        return self._page(list(self.products.values()), page)

    async def search(self, name, category, min_price, max_price, page: PageRequest) -> ProductPage:
        await self._enter("search")
        found = [
            p for p in self.products.values()
            if (not name or name.lower() in p.name.lower())
            and (not category or category.lower() in p.category.lower())
            and (min_price is None or p.price >= min_price)
            and (max_price is None or p.price <= max_price)
        ]
        return self._page(found, page)

    @staticmethod
    def _page(products: List[ProductRecord], page: PageRequest) -> ProductPage:
        ordered = sorted(products, key=lambda p: (getattr(p, page.sort_by), p.id), reverse=page.descending)
        window = ordered[page.offset:page.offset + page.page_size]
        return ProductPage(items=[replace(p) for p in window], total=len(products))

    def seed(self, product_id: str, name: str = "Wireless Mouse", price: str = "29.99") -> ProductRecord:
        product = ProductRecord(id=product_id, name=name, category="electronics", price=Decimal(price))
        self.products[product_id] = product
        return product


class FakeCacheBackend:
    """CacheBackend in a dict; flip ``available`` off to simulate an outage."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.available = True
        self.calls: List[Tuple[str, str]] = []

    async def _enter(self, operation: str, key: str) -> None:
        await asyncio.sleep(0)
        self.calls.append((operation, key))
        if not self.available:
            raise CacheUnavailable(f"cache {operation} failed")

    async def get(self, key: str) -> Optional[str]:
        await self._enter("get", key)
        return self.data.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl: int) -> None:
        await self._enter("set", key)
        self.data[key] = value
        self.ttls[key] = ttl

    async def evict(self, key: str) -> None:
        await self._enter("evict", key)
        self.data.pop(key, None)

    async def evict_by_prefix(self, prefix: str) -> int:
        await self._enter("evict_by_prefix", prefix)
        stale = [k for k in self.data if k.startswith(prefix)]
        for key in stale:
            del self.data[key]
        return len(stale)

    def evictions(self) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0] in ("evict", "evict_by_prefix")]


@pytest.fixture
def review_store() -> FakeReviewStore:
    return FakeReviewStore()


@pytest.fixture
def product_store() -> FakeProductStore:
    store = FakeProductStore()
    store.seed("prod-1")
    return store


@pytest.fixture
def cache_backend() -> FakeCacheBackend:
    return FakeCacheBackend()


@pytest.fixture
def ratings_settings() -> RatingsSettings:
    return RatingsSettings(default_page_size=10, max_page_size=100)


@pytest.fixture
def coherence(cache_backend) -> CacheCoherenceManager:
    return CacheCoherenceManager(cache_backend, domain_ttls(CacheSettings()))


@pytest.fixture
def review_service(review_store, product_store, coherence, ratings_settings) -> ReviewLifecycleService:
    return ReviewLifecycleService(review_store, product_store, coherence, ratings_settings)


@pytest.fixture
def catalog_service(product_store, coherence, ratings_settings) -> ProductCatalogService:
    return ProductCatalogService(product_store, coherence, ratings_settings)


@pytest.fixture
def alice() -> Actor:
    return Actor(user_id="alice", roles=frozenset({ROLE_USER}))


@pytest.fixture
def bob() -> Actor:
    return Actor(user_id="bob", roles=frozenset({ROLE_USER}))


@pytest.fixture
def moderator() -> Actor:
    return Actor(user_id="mod", roles=frozenset({ROLE_USER, ROLE_MODERATOR}))


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id="root", roles=frozenset({ROLE_USER, ROLE_ADMIN}))


@pytest.fixture
async def sql_engine():
    """In-memory SQLite engine with the schema created"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_session_factory(sql_engine):
    return build_session_factory(sql_engine)
