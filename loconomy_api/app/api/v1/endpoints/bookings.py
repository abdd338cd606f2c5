"""
API endpoints for bookings.

Customers request bookings of active listings; providers confirm,
start and complete them.  Both parties share a message thread per
booking.  Conflicting requests are answered with 409 and a body of the
form ``{"type", "message", "suggested_times"}``.
"""

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.rate_limit import rate_limit
from loconomy_api.app.core.security import get_current_user, require_roles
from loconomy_api.app.schemas.booking import (
    BookingCreate,
    BookingRead,
    BookingStats,
    BookingStatus,
    BookingStatusUpdate,
    MessageCreate,
    MessageRead,
)
from loconomy_api.app.services.booking_service import BookingService


router = APIRouter()


@router.post(
    "/",
    response_model=BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("booking_create"))],
)
async def create_booking(
    data: BookingCreate,
    current_user: Dict[str, Any] = Depends(require_roles("consumer", "provider", "admin")),
) -> BookingRead:
    """Request a booking.

    The booking starts ``pending`` unless the ``booking_auto_confirm``
    setting is on.  Returns 402 when the provider has reached the
    monthly booking limit of their plan.
    """
    try:
        return await BookingService.create_booking(data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[BookingRead])
async def list_bookings(
    status_filter: Optional[List[BookingStatus]] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    listing_id: Optional[int] = None,
    as_role: Optional[Literal["customer", "provider"]] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[BookingRead]:
    try:
        return await BookingService.list_bookings(
            current_user,
            statuses=status_filter,
            date_from=date_from,
            date_to=date_to,
            listing_id=listing_id,
            as_role=as_role,
            limit=limit,
            offset=offset,
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/stats", response_model=BookingStats)
async def booking_stats(
    as_provider: Optional[bool] = Query(None, description="Defaults to true for providers"),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingStats:
    if as_provider is None:
        as_provider = current_user.get("role") == "provider"
    return await BookingService.stats(current_user.get("user_id"), as_provider)


@router.get("/code/{code}", response_model=BookingRead)
async def get_booking_by_code(code: str, current_user: Dict[str, Any] = Depends(get_current_user)) -> BookingRead:
    try:
        return await BookingService.get_by_code(code, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(booking_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> BookingRead:
    try:
        return await BookingService.get_booking(booking_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{booking_id}/status", response_model=BookingRead)
async def update_booking_status(
    booking_id: int,
    data: BookingStatusUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> BookingRead:
    try:
        return await BookingService.update_status(
            booking_id, data.status, current_user, reason=data.reason, provider_notes=data.provider_notes
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{booking_id}/messages", response_model=List[MessageRead])
async def list_messages(booking_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> List[MessageRead]:
    try:
        return await BookingService.list_messages(booking_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{booking_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    booking_id: int,
    data: MessageCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> MessageRead:
    try:
        return await BookingService.send_message(booking_id, data.message_text, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{booking_id}/messages/read")
async def mark_messages_read(booking_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> dict:
    try:
        updated = await BookingService.mark_messages_read(booking_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)
    return {"updated": updated}
