"""
Review and Product Stores

Durable storage reached by id only. The protocols describe what the review
engine needs; the SQLAlchemy classes implement them on the async engine.

Every call opens its own session, is bounded by the configured store timeout,
and converts driver failures into StoreUnavailable.
"""

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Protocol, TypeVar

import structlog
from sqlalchemy import and_, delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ratings.database.models import Product, Review, ReviewStatus
from ratings.reviews.errors import DuplicateReview, NotFound, StoreUnavailable
from ratings.reviews.records import PageRequest, ProductPage, ProductRecord, ReviewPage, ReviewRecord

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ReviewStore(Protocol):
    """Durable review storage"""

    async def find_by_id(self, review_id: str) -> Optional[ReviewRecord]: ...

    async def find_by_product_and_status(
        self,
        product_id: str,
        status: ReviewStatus,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> List[ReviewRecord]: ...

    async def page_by_product_and_status(
        self, product_id: str, status: ReviewStatus, page: PageRequest
    ) -> ReviewPage: ...

    async def find_by_user(
        self, user_id: str, status: Optional[ReviewStatus] = None
    ) -> List[ReviewRecord]: ...

    async def exists_by_product_and_user(self, product_id: str, user_id: str) -> bool: ...

    async def insert(self, review: ReviewRecord) -> ReviewRecord: ...

    async def update(
        self, review: ReviewRecord, expected_status: Optional[ReviewStatus] = None
    ) -> Optional[ReviewRecord]: ...

    async def delete(self, review_id: str) -> bool: ...


class ProductStore(Protocol):
    """Durable product storage, including the rating aggregate columns"""

    async def find_by_id(self, product_id: str) -> Optional[ProductRecord]: ...

    async def update_aggregate(
        self,
        product_id: str,
        average_rating: Optional[float],
        total_reviews: int,
        expected_version: int,
    ) -> bool: ...

    async def insert(self, product: ProductRecord) -> ProductRecord: ...

    async def update(self, product_id: str, **fields: Any) -> Optional[ProductRecord]: ...

    async def delete(self, product_id: str) -> bool: ...

    async def list(self, page: PageRequest) -> ProductPage: ...

    async def search(
        self,
        name: Optional[str],
        category: Optional[str],
        min_price: Optional[Decimal],
        max_price: Optional[Decimal],
        page: PageRequest,
    ) -> ProductPage: ...


# =============================================================================
# SQLALCHEMY IMPLEMENTATIONS
# =============================================================================

REVIEW_SORT_COLUMNS = {
    "created_at": Review.created_at,
    "updated_at": Review.updated_at,
    "rating": Review.rating,
}

PRODUCT_SORT_COLUMNS = {
    "name": Product.name,
    "price": Product.price,
    "category": Product.category,
    "created_at": Product.created_at,
    "average_rating": Product.average_rating,
    "total_reviews": Product.total_reviews,
}


def _to_review_record(row: Review) -> ReviewRecord:
    return ReviewRecord(
        id=row.id,
        product_id=row.product_id,
        user_id=row.user_id,
        rating=row.rating,
        comment=row.comment,
        status=ReviewStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_product_record(row: Product) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        price=row.price,
        image_url=row.image_url,
        average_rating=row.average_rating,
        total_reviews=row.total_reviews,
        aggregate_version=row.aggregate_version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class _SqlStore:
    """Session handling and failure mapping shared by both stores"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float):
        self._session_factory = session_factory
        self._timeout = timeout

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        reraise_integrity: bool = False,
    ) -> T:
        async def _in_transaction() -> T:
            async with self._session_factory() as session:
                async with session.begin():
                    return await work(session)

        try:
            return await asyncio.wait_for(_in_transaction(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error("Store call timed out", operation=operation, timeout=self._timeout)
            raise StoreUnavailable(f"{operation} timed out") from e
        except IntegrityError as e:
            if reraise_integrity:
                raise
            logger.error("Store constraint violated", operation=operation, error=str(e))
            raise StoreUnavailable(f"{operation} failed") from e
        except SQLAlchemyError as e:
            logger.error("Store call failed", operation=operation, error=str(e), error_type=type(e).__name__)
            raise StoreUnavailable(f"{operation} failed") from e


class SqlReviewStore(_SqlStore):
    """ReviewStore on the reviews table"""

    async def find_by_id(self, review_id: str) -> Optional[ReviewRecord]:
        async def work(session: AsyncSession) -> Optional[ReviewRecord]:
            row = await session.get(Review, review_id)
            return _to_review_record(row) if row else None

        return await self._run("review.find_by_id", work)

    async def find_by_product_and_status(
        self,
        product_id: str,
        status: ReviewStatus,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> List[ReviewRecord]:
        column = REVIEW_SORT_COLUMNS[sort_by]
        ordering = [column.desc(), Review.id.desc()] if descending else [column.asc(), Review.id.asc()]

        async def work(session: AsyncSession) -> List[ReviewRecord]:
            result = await session.execute(
                select(Review)
                .where(and_(Review.product_id == product_id, Review.status == status))
                .order_by(*ordering)
            )
            return [_to_review_record(r) for r in result.scalars().all()]

        return await self._run("review.find_by_product_and_status", work)

    async def page_by_product_and_status(
        self, product_id: str, status: ReviewStatus, page: PageRequest
    ) -> ReviewPage:
        """One page of a product's reviews in one status, counted and sliced in SQL."""
        column = REVIEW_SORT_COLUMNS[page.sort_by]
        ordering = [column.desc(), Review.id.desc()] if page.descending else [column.asc(), Review.id.asc()]
        condition = and_(Review.product_id == product_id, Review.status == status)

        async def work(session: AsyncSession) -> ReviewPage:
            total = (await session.execute(select(func.count(Review.id)).where(condition))).scalar() or 0
            result = await session.execute(
                select(Review)
                .where(condition)
                .order_by(*ordering)
                .offset(page.offset)
                .limit(page.page_size)
            )
            return ReviewPage(items=[_to_review_record(r) for r in result.scalars().all()], total=total)

        return await self._run("review.page_by_product_and_status", work)

    async def find_by_user(
        self, user_id: str, status: Optional[ReviewStatus] = None
    ) -> List[ReviewRecord]:
        query = select(Review).where(Review.user_id == user_id)
        if status is not None:
            query = query.where(Review.status == status)
        query = query.order_by(Review.created_at.desc(), Review.id.desc())

        async def work(session: AsyncSession) -> List[ReviewRecord]:
            result = await session.execute(query)
            return [_to_review_record(r) for r in result.scalars().all()]

        return await self._run("review.find_by_user", work)

    async def exists_by_product_and_user(self, product_id: str, user_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                select(
                    exists().where(
                        and_(Review.product_id == product_id, Review.user_id == user_id)
                    )
                )
            )
            return bool(result.scalar())

        return await self._run("review.exists_by_product_and_user", work)

    async def insert(self, review: ReviewRecord) -> ReviewRecord:
        async def work(session: AsyncSession) -> ReviewRecord:
            row = Review(
                id=review.id,
                product_id=review.product_id,
                user_id=review.user_id,
                rating=review.rating,
                comment=review.comment,
                status=review.status,
                created_at=review.created_at,
                updated_at=review.updated_at,
            )
            session.add(row)
            await session.flush()
            return _to_review_record(row)

        try:
            return await self._run("review.insert", work, reraise_integrity=True)
        except IntegrityError as e:
            # Either the pair constraint or the product foreign key fired
            if await self.exists_by_product_and_user(review.product_id, review.user_id):
                logger.info(
                    "Concurrent duplicate review rejected by store",
                    product_id=review.product_id,
                    user_id=review.user_id,
                )
                raise DuplicateReview("You have already reviewed this product.") from e
            raise NotFound.for_entity("Product", review.product_id) from e

    async def update(
        self, review: ReviewRecord, expected_status: Optional[ReviewStatus] = None
    ) -> Optional[ReviewRecord]:
        """
        Write rating, comment, status and updated_at.

        With ``expected_status`` the write is conditional on the stored status.
        Returns None when the review is gone or its status moved on.
        """
        conditions = [Review.id == review.id]
        if expected_status is not None:
            conditions.append(Review.status == expected_status)

        async def work(session: AsyncSession) -> Optional[ReviewRecord]:
            result = await session.execute(
                update(Review)
                .where(and_(*conditions))
                .values(
                    rating=review.rating,
                    comment=review.comment,
                    status=review.status,
                    updated_at=review.updated_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = (await session.execute(select(Review).where(Review.id == review.id))).scalar_one()
            return _to_review_record(row)

        return await self._run("review.update", work)

    async def delete(self, review_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(delete(Review).where(Review.id == review_id))
            return result.rowcount > 0

        return await self._run("review.delete", work)


class SqlProductStore(_SqlStore):
    """ProductStore on the products table"""

    async def find_by_id(self, product_id: str) -> Optional[ProductRecord]:
        async def work(session: AsyncSession) -> Optional[ProductRecord]:
            row = await session.get(Product, product_id)
            return _to_product_record(row) if row else None

        return await self._run("product.find_by_id", work)

    async def update_aggregate(
        self,
        product_id: str,
        average_rating: Optional[float],
        total_reviews: int,
        expected_version: int,
    ) -> bool:
        """Compare-and-set on aggregate_version; False when another writer got there first."""

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                update(Product)
                .where(
                    and_(
                        Product.id == product_id,
                        Product.aggregate_version == expected_version,
                    )
                )
                .values(
                    average_rating=average_rating,
                    total_reviews=total_reviews,
                    aggregate_version=expected_version + 1,
                )
            )
            return result.rowcount == 1

        return await self._run("product.update_aggregate", work)

    async def insert(self, product: ProductRecord) -> ProductRecord:
        async def work(session: AsyncSession) -> ProductRecord:
            row = Product(
                id=product.id,
                name=product.name,
                description=product.description,
                category=product.category,
                price=product.price,
                image_url=product.image_url,
                average_rating=None,
                total_reviews=0,
                aggregate_version=0,
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return _to_product_record(row)

        return await self._run("product.insert", work)

    async def update(self, product_id: str, **fields: Any) -> Optional[ProductRecord]:
        async def work(session: AsyncSession) -> Optional[ProductRecord]:
            row = await session.get(Product, product_id)
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            await session.flush()
            await session.refresh(row)
            return _to_product_record(row)

        return await self._run("product.update", work)

    async def delete(self, product_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            await session.execute(delete(Review).where(Review.product_id == product_id))
            result = await session.execute(delete(Product).where(Product.id == product_id))
            return result.rowcount > 0

        return await self._run("product.delete", work)

    async def list(self, page: PageRequest) -> ProductPage:
        return await self._page("product.list", [], page)

    async def search(
        self,
        name: Optional[str],
        category: Optional[str],
        min_price: Optional[Decimal],
        max_price: Optional[Decimal],
        page: PageRequest,
    ) -> ProductPage:
        conditions = []
        if name:
            conditions.append(Product.name.ilike(f"%{name}%"))
        if category:
            conditions.append(Product.category.ilike(f"%{category}%"))
        if min_price is not None:
            conditions.append(Product.price >= min_price)
        if max_price is not None:
            conditions.append(Product.price <= max_price)
        return await self._page("product.search", conditions, page)

    async def _page(self, operation: str, conditions: list, page: PageRequest) -> ProductPage:
        column = PRODUCT_SORT_COLUMNS[page.sort_by]
        ordering = [column.desc(), Product.id.desc()] if page.descending else [column.asc(), Product.id.asc()]

        query = select(Product)
        count_query = select(func.count(Product.id))
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))
        query = query.order_by(*ordering).offset(page.offset).limit(page.page_size)

        async def work(session: AsyncSession) -> ProductPage:
            total = (await session.execute(count_query)).scalar() or 0
            result = await session.execute(query)
            return ProductPage(
                items=[_to_product_record(p) for p in result.scalars().all()],
                total=total,
            )

        return await self._run(operation, work)
