"""
Pydantic models for bookings and their message threads.

A booking reserves a time slot of a listing for a customer.  Prices
are copied from the listing at creation time so later listing edits do
not change existing bookings.
"""

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .availability import check_time


BookingStatus = Literal["pending", "confirmed", "in_progress", "completed", "cancelled", "disputed"]
BookingAction = Literal["confirm", "start", "complete", "cancel", "dispute"]


class BookingCreate(BaseModel):
    """Schema for requesting a booking."""

    listing_id: int
    booking_date: date
    start_time: str = Field(..., examples=["10:00"])
    duration_minutes: Optional[int] = Field(
        None, gt=0, le=24 * 60, description="Defaults to the listing duration or 60 minutes"
    )
    special_requests: Optional[str] = Field(None, max_length=2000)
    customer_notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_time")
    @classmethod
    def validate_start(cls, v: str) -> str:
        return check_time(v)


class BookingStatusUpdate(BaseModel):
    """Move a booking along its lifecycle."""

    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=1000, description="Cancellation or dispute reason")
    provider_notes: Optional[str] = Field(None, max_length=2000)


class BookingRead(BaseModel):
    id: int
    listing_id: int
    provider_id: int
    customer_id: int
    booking_date: date
    start_time: str
    end_time: str
    duration_minutes: int
    service_title: str
    special_requests: Optional[str] = None
    base_price: float
    service_fee: float
    total_amount: float
    currency: str
    status: BookingStatus
    confirmation_code: str
    cancellation_reason: Optional[str] = None
    customer_notes: Optional[str] = None
    provider_notes: Optional[str] = None
    location_type: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True,
    }


class BookingStats(BaseModel):
    total_bookings: int
    by_status: Dict[str, int]
    pending_bookings: int
    confirmed_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    total_revenue: float
    this_month_bookings: int
    this_month_revenue: float


class MessageCreate(BaseModel):
    message_text: str = Field(..., min_length=1, max_length=5000)


class MessageRead(BaseModel):
    id: int
    booking_id: int
    sender_id: Optional[int] = None
    message_text: str
    message_type: str
    is_system_message: bool
    system_event_type: Optional[str] = None
    read_by: List[int]
    created_at: Optional[datetime] = None
