"""
Reviews API Endpoints

Thin layer over ReviewLifecycleService; caching and invariants live in the service.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ratings.database.models import ReviewStatus
from ratings.reviews.records import ROLE_ADMIN, ROLE_MODERATOR, Actor
from ratings.reviews.schemas import PageResponse, ReviewRequest, ReviewResponse, ReviewUpdateRequest
from ratings.reviews.service import ReviewLifecycleService
from ratings.serving.api.dependencies import (
    get_actor,
    get_optional_actor,
    get_review_service,
    require_roles,
)

router = APIRouter()


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    body: ReviewRequest,
    actor: Actor = Depends(get_actor),
    service: ReviewLifecycleService = Depends(get_review_service),
) -> ReviewResponse:
    """Submit a review; it starts out PENDING."""
    return await service.create_review(actor, body.product_id, body.rating, body.comment)


@router.put("/{review_id}", response_model=ReviewResponse)
async def update_review(
    review_id: str,
    body: ReviewUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: ReviewLifecycleService = Depends(get_review_service),
) -> ReviewResponse:
    return await service.update_review(
        actor, review_id, body.rating, body.comment, product_id=body.product_id
    )


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: str,
    actor: Actor = Depends(get_actor),
    service: ReviewLifecycleService = Depends(get_review_service),
) -> Response:
    await service.delete_review(actor, review_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{review_id}/moderate", response_model=ReviewResponse)
async def moderate_review(
    review_id: str,
    target: ReviewStatus = Query(..., alias="status"),
    actor: Actor = Depends(require_roles(ROLE_MODERATOR, ROLE_ADMIN)),
    service: ReviewLifecycleService = Depends(get_review_service),
) -> ReviewResponse:
    """
    Approve or reject a pending review.

    Example: PATCH /api/v1/reviews/abc123/moderate?status=APPROVED
    """
    return await service.moderate_review(actor, review_id, target)


@router.get("/product/{product_id}", response_model=PageResponse[ReviewResponse])
async def get_reviews_by_product(
    product_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at"),
    direction: str = Query("desc"),
    service: ReviewLifecycleService = Depends(get_review_service),
) -> PageResponse[ReviewResponse]:
    """Approved reviews of a product."""
    return await service.get_reviews_by_product(
        product_id, page=page, page_size=page_size, sort_by=sort_by, direction=direction
    )


@router.get("/user/{user_id}", response_model=List[ReviewResponse])
async def get_reviews_by_user(
    user_id: str,
    actor: Optional[Actor] = Depends(get_optional_actor),
    service: ReviewLifecycleService = Depends(get_review_service),
) -> List[ReviewResponse]:
    """All of the caller's own reviews, or another user's approved reviews."""
    return (await service.get_reviews_by_user(actor, user_id)).items


@router.get("/{review_id}", response_model=ReviewResponse)
async def get_review(
    review_id: str,
    service: ReviewLifecycleService = Depends(get_review_service),
) -> ReviewResponse:
    return await service.get_review_by_id(review_id)
