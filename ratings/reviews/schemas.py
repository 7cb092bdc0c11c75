"""
Request and response payloads.

Responses double as the cache payload format: they are stored as JSON and
validated back on a cache hit.
"""

from datetime import datetime
from decimal import Decimal
from math import ceil
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ratings.database.models import ReviewStatus

T = TypeVar("T")


class ReviewRequest(BaseModel):
    """New review"""
    product_id: str
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1)


class ReviewUpdateRequest(BaseModel):
    """Edit of an existing review"""
    product_id: Optional[str] = None
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1)


class ProductRequest(BaseModel):
    """Product create/update body"""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = Field(min_length=1)
    price: Decimal = Field(gt=0)
    image_url: Optional[str] = None


class ReviewResponse(BaseModel):
    """Review as returned to callers"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    user_id: str
    rating: int
    comment: str
    status: ReviewStatus
    created_at: datetime
    updated_at: datetime


class ProductResponse(BaseModel):
    """Product with its rating aggregate"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    category: str
    price: Decimal
    image_url: Optional[str] = None
    average_rating: Optional[float] = None
    total_reviews: int = 0


class PageResponse(BaseModel, Generic[T]):
    """One page of results"""
    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: List[T], total: int, page: int, page_size: int) -> "PageResponse[T]":
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=ceil(total / page_size) if page_size else 0,
        )


class ReviewList(BaseModel):
    """Unpaged review listing"""
    items: List[ReviewResponse]
