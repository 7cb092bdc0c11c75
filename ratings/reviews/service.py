"""
Review Lifecycle Service

Entry point for every review operation the API layer exposes.

Writes run as: validate -> store write -> aggregate recompute -> cache eviction.
Validation, ownership and state errors surface before anything is written.
A failed store write stops the pipeline. Once the review write has committed,
its cache entries are evicted even if the aggregate recompute then fails; the
operation is still reported as failed.

Reads are cache-through via the CacheCoherenceManager.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

import structlog

from ratings.config.settings import RatingsSettings
from ratings.database.models import ReviewStatus
from ratings.metrics import REVIEW_TRANSITIONS
from ratings.reviews.aggregator import RatingAggregator
from ratings.reviews.coherence import CacheCoherenceManager, CacheDomain, WriteEvent
from ratings.reviews.errors import (
    InvalidStateTransition,
    NotFound,
    Unauthorized,
    ValidationError,
)
from ratings.reviews.records import Actor, PageRequest, ReviewRecord
from ratings.reviews.schemas import PageResponse, ReviewList, ReviewResponse
from ratings.reviews.state_machine import ReviewStateMachine
from ratings.reviews.stores import ProductStore, ReviewStore

logger = structlog.get_logger(__name__)

REVIEW_SORTS = ("created_at", "updated_at", "rating")

SCOPE_ALL = "all"
SCOPE_APPROVED = "approved"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_review_fields(rating: Any, comment: Any) -> Tuple[int, str]:
    """
    Check rating is an integer in 1..5 and comment is non-blank.

    Returns the rating and the stripped comment.
    """
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5", detail={"rating": rating})
    if not isinstance(comment, str) or not comment.strip():
        raise ValidationError("Comment must not be empty")
    return rating, comment.strip()


def _to_response(review: ReviewRecord) -> ReviewResponse:
    return ReviewResponse.model_validate(review)


class ReviewLifecycleService:
    """Create, edit, delete, moderate and read reviews"""

    def __init__(
        self,
        review_store: ReviewStore,
        product_store: ProductStore,
        coherence: CacheCoherenceManager,
        settings: Optional[RatingsSettings] = None,
    ):
        self.settings = settings or RatingsSettings()
        self._reviews = review_store
        self._products = product_store
        self._coherence = coherence
        self._state = ReviewStateMachine(review_store)
        self._aggregator = RatingAggregator(
            review_store,
            product_store,
            retry_budget=self.settings.aggregate_retry_budget,
            base_delay=self.settings.aggregate_retry_base_delay,
            max_delay=self.settings.aggregate_retry_max_delay,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create_review(
        self, actor: Actor, product_id: str, rating: int, comment: str
    ) -> ReviewResponse:
        rating, comment = validate_review_fields(rating, comment)

        if await self._products.find_by_id(product_id) is None:
            raise NotFound.for_entity("Product", product_id)
        await self._state.ensure_unique(product_id, actor.user_id)

        now = utcnow()
        review = ReviewRecord(
            id=str(uuid.uuid4()),
            product_id=product_id,
            user_id=actor.user_id,
            rating=rating,
            comment=comment,
            status=self._state.initial_status(),
            created_at=now,
            updated_at=now,
        )
        saved = await self._reviews.insert(review)
        logger.info("Created review", review_id=saved.id, product_id=product_id, user_id=actor.user_id)

        await self._after_write(WriteEvent.REVIEW_CREATED, saved, recompute=True)
        return _to_response(saved)

    async def update_review(
        self,
        actor: Actor,
        review_id: str,
        rating: int,
        comment: str,
        product_id: Optional[str] = None,
    ) -> ReviewResponse:
        rating, comment = validate_review_fields(rating, comment)

        review = await self._get_review(review_id)
        if review.user_id != actor.user_id:
            raise Unauthorized("You can only edit your own reviews.", detail={"review_id": review_id})
        self._state.ensure_editable(review)
        if product_id is not None and product_id != review.product_id:
            raise ValidationError(
                "Review product mismatch.",
                detail={"review_id": review_id, "product_id": product_id},
            )

        rating_changed = rating != review.rating
        saved = await self._reviews.update(
            review.evolve(rating=rating, comment=comment, updated_at=utcnow()),
            expected_status=review.status,
        )
        if saved is None:
            await self._raise_lost_race(review)
        logger.info("Updated review", review_id=review_id, rating_changed=rating_changed)

        await self._after_write(WriteEvent.REVIEW_UPDATED, saved, recompute=rating_changed)
        return _to_response(saved)

    async def delete_review(self, actor: Actor, review_id: str) -> None:
        review = await self._get_review(review_id)
        if review.user_id != actor.user_id and not actor.is_admin:
            raise Unauthorized("You can only delete your own reviews.", detail={"review_id": review_id})

        if not await self._reviews.delete(review_id):
            raise NotFound.for_entity("Review", review_id)
        logger.info("Deleted review", review_id=review_id, product_id=review.product_id, by=actor.user_id)

        await self._after_write(WriteEvent.REVIEW_DELETED, review, recompute=True)

    async def moderate_review(
        self, actor: Actor, review_id: str, status: ReviewStatus
    ) -> ReviewResponse:
        if not actor.can_moderate:
            raise Unauthorized("Moderation requires a moderator or admin.", detail={"review_id": review_id})

        review = await self._get_review(review_id)
        transition = self._state.moderate(review, status)
        if not transition.changed:
            logger.debug("Moderation is a no-op", review_id=review_id, status=review.status.value)
            return _to_response(review)

        saved = await self._reviews.update(
            review.evolve(status=transition.target, updated_at=utcnow()),
            expected_status=transition.source,
        )
        if saved is None:
            await self._raise_lost_race(review)
        REVIEW_TRANSITIONS.labels(source=transition.source.value, target=transition.target.value).inc()
        logger.info(
            "Moderated review",
            review_id=review_id,
            from_status=transition.source.value,
            to_status=transition.target.value,
            moderator=actor.user_id,
        )

        await self._after_write(
            WriteEvent.REVIEW_MODERATED, saved, recompute=transition.affects_visibility
        )
        return _to_response(saved)

    async def _after_write(self, event: WriteEvent, review: ReviewRecord, recompute: bool) -> None:
        try:
            if recompute:
                await self._aggregator.recompute(review.product_id)
        finally:
            await self._coherence.evict_for(event, review.id)
        if recompute:
            await self._coherence.evict_for(WriteEvent.AGGREGATE_CHANGED, review.product_id)

    async def _raise_lost_race(self, review: ReviewRecord) -> None:
        """A conditional review write matched nothing: report why."""
        current = await self._reviews.find_by_id(review.id)
        if current is None:
            raise NotFound.for_entity("Review", review.id)
        raise InvalidStateTransition(
            "Review status changed concurrently.",
            detail={"review_id": review.id, "status": current.status.value},
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_review_by_id(self, review_id: str) -> ReviewResponse:
        async def load() -> ReviewResponse:
            logger.debug("Fetching review from store", review_id=review_id)
            return _to_response(await self._get_review(review_id))

        return await self._coherence.read_through(
            CacheDomain.REVIEWS, {"id": review_id}, load, ReviewResponse
        )

    async def get_reviews_by_product(
        self,
        product_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        sort_by: str = "created_at",
        direction: str = "desc",
    ) -> PageResponse[ReviewResponse]:
        """Approved reviews of a product, one page at a time."""
        request = PageRequest.of(
            page,
            page_size or self.settings.default_page_size,
            sort_by,
            direction,
            allowed_sorts=REVIEW_SORTS,
            max_page_size=self.settings.max_page_size,
        )

        async def load() -> PageResponse[ReviewResponse]:
            logger.debug("Fetching product reviews from store", product_id=product_id, page=request.page)
            if await self._products.find_by_id(product_id) is None:
                raise NotFound.for_entity("Product", product_id)
            approved = await self._reviews.page_by_product_and_status(
                product_id, ReviewStatus.APPROVED, request
            )
            return PageResponse[ReviewResponse].build(
                [_to_response(r) for r in approved.items],
                total=approved.total,
                page=request.page,
                page_size=request.page_size,
            )

        params = {
            "product_id": product_id,
            "page": request.page,
            "size": request.page_size,
            "sort": request.sort_by,
            "direction": request.direction,
        }
        return await self._coherence.read_through(
            CacheDomain.REVIEWS_BY_PRODUCT, params, load, PageResponse[ReviewResponse]
        )

    async def get_reviews_by_user(self, actor: Optional[Actor], user_id: str) -> ReviewList:
        """
        Reviews written by ``user_id``.

        The author sees every status; anyone else sees APPROVED reviews only.
        """
        scope = SCOPE_ALL if actor is not None and actor.user_id == user_id else SCOPE_APPROVED

        async def load() -> ReviewList:
            logger.debug("Fetching user reviews from store", user_id=user_id, scope=scope)
            status = None if scope == SCOPE_ALL else ReviewStatus.APPROVED
            reviews = await self._reviews.find_by_user(user_id, status=status)
            return ReviewList(items=[_to_response(r) for r in reviews])

        return await self._coherence.read_through(
            CacheDomain.REVIEWS_BY_USER, {"user_id": user_id, "scope": scope}, load, ReviewList
        )

    async def _get_review(self, review_id: str) -> ReviewRecord:
        review = await self._reviews.find_by_id(review_id)
        if review is None:
            raise NotFound.for_entity("Review", review_id)
        return review
