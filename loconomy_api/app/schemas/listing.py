"""
Pydantic models for service listings.

Field presence and types are checked here; the marketplace rules
(minimum lengths, category catalogue, pricing consistency, service
areas) are enforced by ``validate_listing`` in the listing service so that partial
updates are validated against the merged listing.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


PricingType = Literal["hourly", "fixed", "custom"]
LocationType = Literal["on_site", "remote", "both"]
ListingStatus = Literal["draft", "pending", "active", "paused", "rejected", "archived"]
SortOption = Literal["relevance", "price_low", "price_high", "newest", "popular", "rating"]


class ListingBase(BaseModel):
    title: str = Field(..., examples=["Deep house cleaning"])
    description: str
    category: str = Field(..., examples=["Cleaning Services"])
    subcategory: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    pricing_type: PricingType = "fixed"
    base_price: Optional[float] = None
    hourly_rate: Optional[float] = None
    minimum_hours: Optional[float] = Field(None, gt=0)
    duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    location_type: LocationType = "on_site"
    service_areas: List[str] = Field(default_factory=list)
    max_bookings_per_day: Optional[int] = Field(None, ge=1)
    advance_booking_days: int = Field(30, ge=1, le=365)
    cancellation_policy: Optional[str] = None


class ListingCreate(ListingBase):
    workspace_id: Optional[int] = None


class ListingUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    tags: Optional[List[str]] = None
    pricing_type: Optional[PricingType] = None
    base_price: Optional[float] = None
    hourly_rate: Optional[float] = None
    minimum_hours: Optional[float] = Field(None, gt=0)
    duration_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)
    location_type: Optional[LocationType] = None
    service_areas: Optional[List[str]] = None
    max_bookings_per_day: Optional[int] = Field(None, ge=1)
    advance_booking_days: Optional[int] = Field(None, ge=1, le=365)
    cancellation_policy: Optional[str] = None

    @field_validator(
        "title",
        "description",
        "category",
        "pricing_type",
        "location_type",
        "advance_booking_days",
    )
    @classmethod
    def not_null(cls, v, info):
        # omitted is fine, an explicit null is not
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class ListingStatusChange(BaseModel):
    status: ListingStatus


class ListingModerate(BaseModel):
    approved: bool
    reason: Optional[str] = Field(None, max_length=1000)


class ListingFeature(BaseModel):
    is_featured: bool


class ListingRead(ListingBase):
    id: int
    provider_id: int
    workspace_id: Optional[int] = None
    status: ListingStatus
    rejection_reason: Optional[str] = None
    is_featured: bool = False
    view_count: int = 0
    booking_count: int = 0
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    provider_name: Optional[str] = None
    average_rating: Optional[float] = None
    review_count: int = 0

    model_config = {
        "from_attributes": True,
    }


class ListingSearchResult(BaseModel):
    listings: List[ListingRead]
    total: int
    page: int
    total_pages: int


class CategoryRead(BaseModel):
    name: str
    subcategories: List[str]


class ListingStats(BaseModel):
    total: int
    by_status: dict
    total_views: int
    total_bookings: int
