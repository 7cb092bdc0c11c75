"""
Review Moderation State Machine

    PENDING --approve--> APPROVED
    PENDING --reject---> REJECTED

APPROVED and REJECTED are terminal. Only APPROVED reviews are publicly
visible and counted in the product aggregate.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet

import structlog

from ratings.database.models import ReviewStatus
from ratings.reviews.errors import DuplicateReview, InvalidStateTransition
from ratings.reviews.records import ReviewRecord
from ratings.reviews.stores import ReviewStore

logger = structlog.get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[ReviewStatus, FrozenSet[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED}),
    ReviewStatus.APPROVED: frozenset(),
    ReviewStatus.REJECTED: frozenset(),
}

MODERATION_TARGETS = frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED})


@dataclass(frozen=True)
class Transition:
    """Outcome of a moderation request"""
    source: ReviewStatus
    target: ReviewStatus

    @property
    def changed(self) -> bool:
        return self.source != self.target

    @property
    def affects_visibility(self) -> bool:
        """True when the review enters or leaves the APPROVED set."""
        return self.changed and ReviewStatus.APPROVED in (self.source, self.target)


class ReviewStateMachine:
    """Legal status transitions and (product, user) uniqueness"""

    def __init__(self, review_store: ReviewStore):
        self._reviews = review_store

    @staticmethod
    def initial_status() -> ReviewStatus:
        return ReviewStatus.PENDING

    @staticmethod
    def moderate(review: ReviewRecord, target: ReviewStatus) -> Transition:
        """
        Validate a moderation request.

        Asking for the status the review already has is a no-op (the returned
        transition reports ``changed == False``), not an error.

        Raises:
            InvalidStateTransition: review is not PENDING, or target is not
                a moderation outcome
        """
        try:
            target = ReviewStatus(target)
        except ValueError as e:
            raise InvalidStateTransition(
                f"Invalid moderation status: {target}",
                detail={"review_id": review.id, "target": str(target)},
            ) from e
        if review.status == target:
            return Transition(review.status, target)

        if review.status != ReviewStatus.PENDING:
            raise InvalidStateTransition(
                "Only PENDING reviews can be moderated.",
                detail={"review_id": review.id, "status": review.status.value, "target": target.value},
            )
        if target not in MODERATION_TARGETS or target not in ALLOWED_TRANSITIONS[review.status]:
            raise InvalidStateTransition(
                f"Invalid moderation status: {target.value}",
                detail={"review_id": review.id, "target": target.value},
            )
        return Transition(review.status, target)

    @staticmethod
    def ensure_editable(review: ReviewRecord) -> None:
        if review.status == ReviewStatus.REJECTED:
            raise InvalidStateTransition(
                "Rejected reviews cannot be edited.",
                detail={"review_id": review.id},
            )

    async def ensure_unique(self, product_id: str, user_id: str) -> None:
        """
        Best-effort pair check. The store's unique constraint settles races
        between concurrent inserts.
        """
        if await self._reviews.exists_by_product_and_user(product_id, user_id):
            logger.info("Duplicate review rejected", product_id=product_id, user_id=user_id)
            raise DuplicateReview(
                "You have already reviewed this product.",
                detail={"product_id": product_id},
            )
