"""
API endpoints for reviews.

Participants of a completed booking review each other.  Approved
reviews and rating summaries are public; administrators moderate the
queue.  Review text is escaped when returned to protect clients from
XSS.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import get_current_user, require_roles
from loconomy_api.app.schemas.review import RatingSummary, ReviewCreate, ReviewModerate, ReviewRead
from loconomy_api.app.services.review_service import ReviewService


router = APIRouter()


@router.post("/", response_model=ReviewRead, status_code=status.HTTP_201_CREATED, summary="Submit a review")
async def create_review(data: ReviewCreate, current_user: Dict[str, Any] = Depends(get_current_user)) -> ReviewRead:
    """Review the other party of a completed booking.

    The review stays hidden until approved unless reviews are
    auto-approved.
    """
    try:
        return await ReviewService.create_review(data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[ReviewRead], summary="List published reviews")
async def list_reviews(
    listing_id: Optional[int] = None,
    provider_id: Optional[int] = Query(None, description="Reviews received by this user"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> List[ReviewRead]:
    if listing_id is None and provider_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="listing_id or provider_id is required")
    return await ReviewService.list_reviews(
        listing_id=listing_id, reviewee_id=provider_id, limit=limit, offset=offset
    )


@router.get("/summary", response_model=RatingSummary)
async def rating_summary(listing_id: Optional[int] = None, provider_id: Optional[int] = None) -> RatingSummary:
    try:
        return await ReviewService.rating_summary(listing_id=listing_id, reviewee_id=provider_id)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/pending", response_model=List[ReviewRead])
async def pending_reviews(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> List[ReviewRead]:
    return await ReviewService.list_pending(limit=limit, offset=offset)


@router.get("/booking/{booking_id}", response_model=List[ReviewRead])
async def booking_reviews(
    booking_id: int, current_user: Dict[str, Any] = Depends(get_current_user)
) -> List[ReviewRead]:
    try:
        return await ReviewService.get_booking_reviews(booking_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{review_id}/moderate", response_model=ReviewRead, summary="Moderate a review")
async def moderate_review(
    review_id: int,
    data: ReviewModerate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> ReviewRead:
    try:
        return await ReviewService.moderate(review_id, data.approved, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(review_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> None:
    try:
        await ReviewService.delete_review(review_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)
