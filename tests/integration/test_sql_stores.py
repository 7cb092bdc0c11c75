"""
Integration Tests - SQL Stores

Run the SQLAlchemy stores and the full review service against in-memory SQLite.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from ratings.database.models import ReviewStatus
from ratings.reviews.errors import DuplicateReview, StoreUnavailable
from ratings.reviews.records import PageRequest, ProductRecord, ReviewRecord
from ratings.reviews.service import ReviewLifecycleService
from ratings.reviews.stores import SqlProductStore, SqlReviewStore


@pytest.fixture
def sql_review_store(sql_session_factory):
    return SqlReviewStore(sql_session_factory, timeout=5.0)


@pytest.fixture
def sql_product_store(sql_session_factory):
    return SqlProductStore(sql_session_factory, timeout=5.0)


async def add_product(store, product_id, name="Wireless Mouse", category="electronics", price="29.99"):
    return await store.insert(
        ProductRecord(id=product_id, name=name, category=category, price=Decimal(price))
    )


def make_review(product_id, user_id, rating=4, status=ReviewStatus.PENDING, minutes_ago=0):
    at = datetime(2025, 1, 1, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return ReviewRecord(
        id=f"{product_id}-{user_id}",
        product_id=product_id,
        user_id=user_id,
        rating=rating,
        comment="ok",
        status=status,
        created_at=at,
        updated_at=at,
    )


class TestSqlReviewStore:
    """Tests for SqlReviewStore"""

    async def test_insert_and_find(self, sql_review_store, sql_product_store):
        await add_product(sql_product_store, "p1")

        await sql_review_store.insert(make_review("p1", "alice"))
        found = await sql_review_store.find_by_id("p1-alice")

        assert found.status == ReviewStatus.PENDING
        assert await sql_review_store.exists_by_product_and_user("p1", "alice")
        assert not await sql_review_store.exists_by_product_and_user("p1", "bob")
        assert await sql_review_store.find_by_id("missing") is None

    async def test_pair_constraint_maps_to_duplicate(self, sql_review_store, sql_product_store):
        """The unique index catches inserts that skipped the pre-check"""
        await add_product(sql_product_store, "p1")
        await sql_review_store.insert(make_review("p1", "alice"))

        second = make_review("p1", "alice")
        second.id = "another-id"
        with pytest.raises(DuplicateReview):
            await sql_review_store.insert(second)

    async def test_conditional_update(self, sql_review_store, sql_product_store):
        await add_product(sql_product_store, "p1")
        review = await sql_review_store.insert(make_review("p1", "alice"))

        approved = await sql_review_store.update(
            review.evolve(status=ReviewStatus.APPROVED), expected_status=ReviewStatus.PENDING
        )
        stale = await sql_review_store.update(
            review.evolve(status=ReviewStatus.REJECTED), expected_status=ReviewStatus.PENDING
        )

        assert approved.status == ReviewStatus.APPROVED
        assert stale is None
        assert (await sql_review_store.find_by_id(review.id)).status == ReviewStatus.APPROVED

    async def test_find_by_product_and_status_sorted(self, sql_review_store, sql_product_store):
        await add_product(sql_product_store, "p1")
        for user, rating in (("a", 2), ("b", 5), ("c", 3)):
            await sql_review_store.insert(make_review("p1", user, rating, status=ReviewStatus.APPROVED))
        await sql_review_store.insert(make_review("p1", "d", 1))

        found = await sql_review_store.find_by_product_and_status(
            "p1", ReviewStatus.APPROVED, sort_by="rating", descending=True
        )

        assert [r.rating for r in found] == [5, 3, 2]

    async def test_page_by_product_and_status(self, sql_review_store, sql_product_store):
        """Paging happens in the query; total counts the whole status set"""
        await add_product(sql_product_store, "p1")
        for minutes_ago, user in enumerate(("a", "b", "c", "d", "e")):
            await sql_review_store.insert(
                make_review("p1", user, status=ReviewStatus.APPROVED, minutes_ago=minutes_ago)
            )
        await sql_review_store.insert(make_review("p1", "f"))

        page = await sql_review_store.page_by_product_and_status(
            "p1", ReviewStatus.APPROVED, PageRequest(page=2, page_size=2)
        )

        assert page.total == 5
        assert [r.user_id for r in page.items] == ["c", "d"]

    async def test_find_by_user(self, sql_review_store, sql_product_store):
        await add_product(sql_product_store, "p1")
        await add_product(sql_product_store, "p2")
        await sql_review_store.insert(make_review("p1", "alice", status=ReviewStatus.APPROVED))
        await sql_review_store.insert(make_review("p2", "alice"))

        assert len(await sql_review_store.find_by_user("alice")) == 2
        assert len(await sql_review_store.find_by_user("alice", status=ReviewStatus.APPROVED)) == 1

    async def test_delete(self, sql_review_store, sql_product_store):
        await add_product(sql_product_store, "p1")
        await sql_review_store.insert(make_review("p1", "alice"))

        assert await sql_review_store.delete("p1-alice")
        assert not await sql_review_store.delete("p1-alice")


class TestSqlProductStore:
    """Tests for SqlProductStore"""

    async def test_aggregate_compare_and_set(self, sql_product_store):
        product = await add_product(sql_product_store, "p1")
        assert product.aggregate_version == 0

        assert await sql_product_store.update_aggregate("p1", 4.5, 2, expected_version=0)
        assert not await sql_product_store.update_aggregate("p1", 1.0, 1, expected_version=0)

        stored = await sql_product_store.find_by_id("p1")
        assert (stored.average_rating, stored.total_reviews, stored.aggregate_version) == (4.5, 2, 1)

    async def test_update_fields(self, sql_product_store):
        await add_product(sql_product_store, "p1")

        updated = await sql_product_store.update("p1", name="Silent Mouse")

        assert updated.name == "Silent Mouse"
        assert await sql_product_store.update("missing", name="x") is None

    async def test_delete_removes_reviews(self, sql_product_store, sql_review_store):
        await add_product(sql_product_store, "p1")
        await sql_review_store.insert(make_review("p1", "alice"))

        assert await sql_product_store.delete("p1")
        assert await sql_review_store.find_by_id("p1-alice") is None
        assert not await sql_product_store.delete("p1")

    async def test_list_paging(self, sql_product_store):
        for i, name in enumerate(["Cable", "Adapter", "Battery"]):
            await add_product(sql_product_store, f"p{i}", name=name)

        page = await sql_product_store.list(PageRequest(page=2, page_size=2, sort_by="name", direction="asc"))

        assert page.total == 3
        assert [p.name for p in page.items] == ["Cable"]

    async def test_search(self, sql_product_store):
        await add_product(sql_product_store, "p1", name="Wireless Mouse", price="29.99")
        await add_product(sql_product_store, "p2", name="Gaming MOUSE", price="79.00")
        await add_product(sql_product_store, "p3", name="Desk Lamp", category="home", price="25.00")

        by_name = await sql_product_store.search("mouse", None, None, Decimal("50"), PageRequest(sort_by="name"))
        by_category = await sql_product_store.search(None, "HOME", None, None, PageRequest(sort_by="name"))

        assert [p.id for p in by_name.items] == ["p1"]
        assert [p.id for p in by_category.items] == ["p3"]


class TestServiceOnSql:
    """ReviewLifecycleService wired to the SQL stores"""

    async def test_lifecycle(
        self, sql_review_store, sql_product_store, coherence, alice, bob, moderator
    ):
        service = ReviewLifecycleService(sql_review_store, sql_product_store, coherence)
        await add_product(sql_product_store, "p1")

        first = await service.create_review(alice, "p1", 4, "Good")
        second = await service.create_review(bob, "p1", 2, "Meh")
        with pytest.raises(DuplicateReview):
            await service.create_review(alice, "p1", 5, "Again")

        await service.moderate_review(moderator, first.id, ReviewStatus.APPROVED)
        await service.moderate_review(moderator, second.id, ReviewStatus.APPROVED)
        product = await sql_product_store.find_by_id("p1")
        assert (product.average_rating, product.total_reviews) == (3.0, 2)

        await service.delete_review(alice, first.id)
        product = await sql_product_store.find_by_id("p1")
        assert (product.average_rating, product.total_reviews) == (2.0, 1)

        page = await service.get_reviews_by_product("p1")
        assert [r.user_id for r in page.items] == ["bob"]


class StalledSession:
    """Session whose queries never finish in time"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def begin(self):
        return self

    async def get(self, *args, **kwargs):
        await asyncio.sleep(1)

    async def execute(self, *args, **kwargs):
        await asyncio.sleep(1)


class BrokenSession(StalledSession):
    """Session whose database connection is gone"""

    async def get(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


class TestStoreFailures:
    """Driver failures and timeouts surface as StoreUnavailable"""

    async def test_timeout(self):
        store = SqlReviewStore(StalledSession, timeout=0.01)

        with pytest.raises(StoreUnavailable, match="review.find_by_id timed out"):
            await store.find_by_id("r1")

    async def test_timeout_on_product_store(self):
        store = SqlProductStore(StalledSession, timeout=0.01)

        with pytest.raises(StoreUnavailable):
            await store.update_aggregate("p1", 4.0, 1, expected_version=0)

    async def test_operational_error(self):
        store = SqlReviewStore(BrokenSession, timeout=5.0)

        with pytest.raises(StoreUnavailable, match="review.find_by_product_and_status failed") as exc_info:
            await store.find_by_product_and_status("p1", ReviewStatus.APPROVED)

        assert isinstance(exc_info.value.__cause__, OperationalError)

    async def test_operational_error_on_product_store(self):
        store = SqlProductStore(BrokenSession, timeout=5.0)

        with pytest.raises(StoreUnavailable):
            await store.find_by_id("p1")
