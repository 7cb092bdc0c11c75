"""
Review Service Errors

Typed failures returned to the API layer. Each carries a stable ``code`` the
transport maps to a status; messages never include store internals.
"""

from typing import Optional


class RatingsError(Exception):
    """Base class for every failure the service reports to callers"""

    code = "internal_error"

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class NotFound(RatingsError):
    """A review, product or user id did not resolve"""

    code = "not_found"

    @classmethod
    def for_entity(cls, entity: str, entity_id: str) -> "NotFound":
        return cls(f"{entity} not found: {entity_id}", detail={"entity": entity, "id": entity_id})


class DuplicateReview(RatingsError):
    """The user already reviewed this product"""

    code = "duplicate_review"


class Unauthorized(RatingsError):
    """Actor is not the owner and lacks an override role"""

    code = "unauthorized"


class InvalidStateTransition(RatingsError):
    """Moderation or edit is not allowed from the review's current status"""

    code = "invalid_state_transition"


class ValidationError(RatingsError):
    """Input violates a field rule (rating range, empty comment, paging)"""

    code = "validation_error"


class StoreUnavailable(RatingsError):
    """Durable store call failed or timed out; the operation was aborted"""

    code = "store_unavailable"


class AggregateConflict(StoreUnavailable):
    """Conditional aggregate write kept losing to concurrent writers"""

    code = "aggregate_conflict"


class CacheUnavailable(Exception):
    """Cache backend failed or timed out. Absorbed by the coherence manager."""
