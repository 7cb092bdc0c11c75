"""
Reviews Module

Moderation state machine, rating aggregation, cache coherence and the
review lifecycle service built on them.
"""
from .errors import (
    RatingsError,
    NotFound,
    DuplicateReview,
    Unauthorized,
    InvalidStateTransition,
    ValidationError,
    StoreUnavailable,
    AggregateConflict,
    CacheUnavailable,
)
from .records import Actor, PageRequest, RatingAggregate, ReviewRecord, ProductRecord

__all__ = [
    "RatingsError",
    "NotFound",
    "DuplicateReview",
    "Unauthorized",
    "InvalidStateTransition",
    "ValidationError",
    "StoreUnavailable",
    "AggregateConflict",
    "CacheUnavailable",
    "Actor",
    "PageRequest",
    "RatingAggregate",
    "ReviewRecord",
    "ProductRecord",
]
