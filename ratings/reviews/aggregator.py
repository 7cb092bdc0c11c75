"""
Rating Aggregator

Recomputes a product's (average_rating, total_reviews) from scratch out of its
APPROVED reviews. Full recomputation keeps the aggregate exactly equal to the
review set; a running sum/count adjusted per transition would give the same
values with less reading at high review volumes.

Concurrent writers for one product are serialized by a compare-and-set on
products.aggregate_version: the version is read before the review set, and a
write only lands if nobody else wrote in between. The loser backs off for a
random, exponentially growing delay, re-reads and retries until its time
budget runs out. No lock is held while awaiting the stores.
"""

import asyncio
import random
import time
from typing import Iterable, Optional, Tuple

import structlog

from ratings.database.models import ReviewStatus
from ratings.metrics import AGGREGATE_WRITES
from ratings.reviews.errors import AggregateConflict, NotFound
from ratings.reviews.records import RatingAggregate, ReviewRecord
from ratings.reviews.stores import ProductStore, ReviewStore

logger = structlog.get_logger(__name__)

# keeps base_delay * 2**n finite
MAX_BACKOFF_EXPONENT = 16


def compute_aggregate(reviews: Iterable[ReviewRecord]) -> Tuple[Optional[float], int]:
    """
    Average and count of the given ratings.

    Returns (None, 0) for an empty set.
    """
    ratings = [r.rating for r in reviews]
    if not ratings:
        return None, 0
    return sum(ratings) / len(ratings), len(ratings)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Full-jitter exponential backoff after the given failed attempt (1-based)."""
    ceiling = min(max_delay, base_delay * (2 ** min(attempt - 1, MAX_BACKOFF_EXPONENT)))
    return random.uniform(0, ceiling)


class RatingAggregator:
    """Owns the aggregate columns of every product"""

    def __init__(
        self,
        review_store: ReviewStore,
        product_store: ProductStore,
        retry_budget: float = 5.0,
        base_delay: float = 0.005,
        max_delay: float = 0.1,
    ):
        self._reviews = review_store
        self._products = product_store
        self.retry_budget = max(0.0, retry_budget)
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def recompute(self, product_id: str) -> RatingAggregate:
        """
        Recompute and persist the aggregate for ``product_id``.

        The first attempt always runs; lost writes are retried until
        ``retry_budget`` seconds have passed.

        Raises:
            NotFound: product does not exist
            AggregateConflict: still losing the conditional write when the budget ran out
            StoreUnavailable: a store call failed
        """
        deadline = time.monotonic() + self.retry_budget
        attempt = 0
        while True:
            attempt += 1
            product = await self._products.find_by_id(product_id)
            if product is None:
                raise NotFound.for_entity("Product", product_id)

            approved = await self._reviews.find_by_product_and_status(
                product_id, ReviewStatus.APPROVED
            )
            average, total = compute_aggregate(approved)

            written = await self._products.update_aggregate(
                product_id, average, total, expected_version=product.aggregate_version
            )
            if written:
                AGGREGATE_WRITES.labels(outcome="written").inc()
                logger.info(
                    "Updated product rating",
                    product_id=product_id,
                    average_rating=average,
                    total_reviews=total,
                    attempt=attempt,
                )
                return RatingAggregate(product_id, average, total)

            AGGREGATE_WRITES.labels(outcome="conflict").inc()
            if time.monotonic() >= deadline:
                break

            delay = backoff_delay(attempt, self.base_delay, self.max_delay)
            logger.debug(
                "Aggregate write lost to a concurrent writer",
                product_id=product_id,
                attempt=attempt,
                expected_version=product.aggregate_version,
                retry_in=round(delay, 4),
            )
            await asyncio.sleep(delay)

        AGGREGATE_WRITES.labels(outcome="exhausted").inc()
        logger.error(
            "Giving up on aggregate write",
            product_id=product_id,
            attempts=attempt,
            retry_budget=self.retry_budget,
        )
        raise AggregateConflict(
            f"Could not update rating for product {product_id}",
            detail={"product_id": product_id},
        )
