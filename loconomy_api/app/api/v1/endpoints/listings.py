"""
API endpoints for service listings.

Search, categories and active listings are public.  Providers manage
their own listings; administrators moderate submitted listings and
pick featured ones.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.rate_limit import rate_limit
from loconomy_api.app.core.security import get_optional_user, require_roles
from loconomy_api.app.schemas.listing import (
    CategoryRead,
    ListingCreate,
    ListingFeature,
    ListingModerate,
    ListingRead,
    ListingSearchResult,
    ListingStats,
    ListingStatus,
    ListingStatusChange,
    ListingUpdate,
    LocationType,
    PricingType,
    SortOption,
)
from loconomy_api.app.services.listing_service import ListingService


router = APIRouter()


@router.get("/categories", response_model=List[CategoryRead])
async def list_categories() -> List[CategoryRead]:
    return ListingService.categories()


@router.get("/search", response_model=ListingSearchResult, dependencies=[Depends(rate_limit("search"))])
async def search_listings(
    q: Optional[str] = Query(None, description="Text searched in title, description and tags"),
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    location: Optional[str] = Query(None, description="Service area, e.g. a city"),
    location_type: Optional[LocationType] = None,
    pricing_type: Optional[PricingType] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    workspace_id: Optional[int] = None,
    provider_id: Optional[int] = None,
    sort_by: SortOption = "relevance",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
) -> ListingSearchResult:
    """Search active listings.

    Results carry the provider's name and the average of approved
    review ratings.
    """
    try:
        return await ListingService.search(
            query=q,
            category=category,
            subcategory=subcategory,
            location=location,
            location_type=location_type,
            pricing_type=pricing_type,
            min_price=min_price,
            max_price=max_price,
            workspace_id=workspace_id,
            provider_id=provider_id,
            sort_by=sort_by,
            page=page,
            limit=limit,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/mine", response_model=List[ListingRead])
async def my_listings(
    status_filter: Optional[ListingStatus] = Query(None, alias="status"),
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> List[ListingRead]:
    try:
        return await ListingService.list_provider_listings(current_user["user_id"], status_filter)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/stats", response_model=ListingStats)
async def my_listing_stats(
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> ListingStats:
    return await ListingService.stats(current_user["user_id"])


@router.get("/pending", response_model=List[ListingRead])
async def pending_listings(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> List[ListingRead]:
    """Moderation queue, oldest submission first."""
    return await ListingService.list_pending(limit=limit, offset=offset)


@router.post("/", response_model=ListingRead, status_code=status.HTTP_201_CREATED)
async def create_listing(
    data: ListingCreate,
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> ListingRead:
    """Create a draft listing.

    Fails with 402 when the provider's plan allows no more listings.
    """
    try:
        return await ListingService.create_listing(data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{listing_id}", response_model=ListingRead)
async def get_listing(
    listing_id: int,
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
) -> ListingRead:
    try:
        return await ListingService.get_listing(listing_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{listing_id}", response_model=ListingRead)
async def update_listing(
    listing_id: int,
    data: ListingUpdate,
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> ListingRead:
    try:
        return await ListingService.update_listing(listing_id, data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{listing_id}/status", response_model=ListingRead)
async def change_listing_status(
    listing_id: int,
    data: ListingStatusChange,
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> ListingRead:
    """Submit, pause, resume or archive a listing."""
    try:
        return await ListingService.change_status(listing_id, data.status, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{listing_id}", response_model=ListingRead)
async def archive_listing(
    listing_id: int,
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> ListingRead:
    """Archive a listing.  Archived listings keep their booking history."""
    try:
        return await ListingService.change_status(listing_id, "archived", current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{listing_id}/moderate", response_model=ListingRead)
async def moderate_listing(
    listing_id: int,
    data: ListingModerate,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> ListingRead:
    try:
        return await ListingService.moderate(listing_id, data.approved, data.reason, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{listing_id}/feature", response_model=ListingRead)
async def feature_listing(
    listing_id: int,
    data: ListingFeature,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> ListingRead:
    try:
        return await ListingService.set_featured(listing_id, data.is_featured, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)
