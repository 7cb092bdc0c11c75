"""
Plain records exchanged between the service and its stores.

Reviews reference products and users by id only.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import FrozenSet, Iterable, List, Optional

from ratings.database.models import ReviewStatus
from ratings.reviews.errors import ValidationError


ROLE_USER = "USER"
ROLE_MODERATOR = "MODERATOR"
ROLE_ADMIN = "ADMIN"


@dataclass(frozen=True)
class Actor:
    """Identity of the caller, supplied by the API boundary"""
    user_id: str
    roles: FrozenSet[str] = field(default_factory=lambda: frozenset({ROLE_USER}))

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def can_moderate(self) -> bool:
        return bool(self.roles & {ROLE_MODERATOR, ROLE_ADMIN})


@dataclass
class ReviewRecord:
    """A stored review"""
    id: str
    product_id: str
    user_id: str
    rating: int
    comment: str
    status: ReviewStatus
    created_at: datetime
    updated_at: datetime

    def evolve(self, **changes) -> "ReviewRecord":
        return replace(self, **changes)


@dataclass
class ProductRecord:
    """A stored product with its rating aggregate"""
    id: str
    name: str
    category: str
    price: Decimal
    description: Optional[str] = None
    image_url: Optional[str] = None
    average_rating: Optional[float] = None
    total_reviews: int = 0
    aggregate_version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class RatingAggregate:
    """Derived (average_rating, total_reviews) for one product"""
    product_id: str
    average_rating: Optional[float]
    total_reviews: int


@dataclass(frozen=True)
class PageRequest:
    """1-based page plus sort order"""
    page: int = 1
    page_size: int = 10
    sort_by: str = "created_at"
    direction: str = "desc"

    @classmethod
    def of(
        cls,
        page: int,
        page_size: int,
        sort_by: str,
        direction: str,
        allowed_sorts: Iterable[str],
        max_page_size: int = 100,
    ) -> "PageRequest":
        """Validated page request; raises ValidationError on bad paging or sort."""
        allowed = tuple(allowed_sorts)
        direction = (direction or "").lower()
        if page < 1:
            raise ValidationError("page must be >= 1", detail={"page": page})
        if not 1 <= page_size <= max_page_size:
            raise ValidationError(
                f"page_size must be between 1 and {max_page_size}",
                detail={"page_size": page_size},
            )
        if sort_by not in allowed:
            raise ValidationError(
                f"Cannot sort by {sort_by!r}",
                detail={"sort_by": sort_by, "allowed": list(allowed)},
            )
        if direction not in ("asc", "desc"):
            raise ValidationError("direction must be 'asc' or 'desc'", detail={"direction": direction})
        return cls(page=page, page_size=page_size, sort_by=sort_by, direction=direction)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def descending(self) -> bool:
        return self.direction == "desc"


@dataclass
class ProductPage:
    """A page of products as returned by the store"""
    items: List[ProductRecord]
    total: int


@dataclass
class ReviewPage:
    """A page of reviews as returned by the store"""
    items: List[ReviewRecord]
    total: int
