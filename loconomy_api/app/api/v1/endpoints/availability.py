"""
API endpoints for provider calendars.

Providers maintain their weekly hours and date overrides under
``/availability/me`` and ``/availability/overrides``.  Anyone can read
a provider's hours, free slots and month calendar.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import require_roles
from loconomy_api.app.schemas.availability import (
    AvailabilityCheck,
    AvailabilitySet,
    CalendarDay,
    OverrideCreate,
    OverrideRead,
    TimeSlot,
    WeeklyHoursRead,
    check_time,
)
from loconomy_api.app.services.availability_service import AvailabilityService


router = APIRouter()

provider_only = require_roles("provider", "admin")


@router.get("/me", response_model=List[WeeklyHoursRead])
async def my_hours(current_user: Dict[str, Any] = Depends(provider_only)) -> List[WeeklyHoursRead]:
    return await AvailabilityService.get_weekly_hours(current_user["user_id"])


@router.put("/me", response_model=List[WeeklyHoursRead])
async def set_my_hours(
    data: AvailabilitySet, current_user: Dict[str, Any] = Depends(provider_only)
) -> List[WeeklyHoursRead]:
    """Replace the whole weekly schedule."""
    try:
        return await AvailabilityService.set_weekly_hours(current_user["user_id"], data.hours)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/overrides", response_model=List[OverrideRead])
async def list_overrides(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    current_user: Dict[str, Any] = Depends(provider_only),
) -> List[OverrideRead]:
    return await AvailabilityService.list_overrides(current_user["user_id"], date_from, date_to)


@router.post("/overrides", response_model=OverrideRead, status_code=status.HTTP_201_CREATED)
async def add_override(data: OverrideCreate, current_user: Dict[str, Any] = Depends(provider_only)) -> OverrideRead:
    """Open extra hours or block time on a single date."""
    try:
        return await AvailabilityService.add_override(current_user["user_id"], data)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_override(override_id: int, current_user: Dict[str, Any] = Depends(provider_only)) -> None:
    try:
        await AvailabilityService.remove_override(
            current_user["user_id"], override_id, is_admin=current_user.get("role") == "admin"
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/providers/{provider_id}", response_model=List[WeeklyHoursRead])
async def provider_hours(provider_id: int) -> List[WeeklyHoursRead]:
    return await AvailabilityService.get_weekly_hours(provider_id)


@router.get("/providers/{provider_id}/slots", response_model=List[TimeSlot])
async def provider_slots(
    provider_id: int,
    day: date = Query(..., alias="date"),
    duration: int = Query(60, ge=15, le=24 * 60),
) -> List[TimeSlot]:
    try:
        return await AvailabilityService.get_available_slots(provider_id, day, duration)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/providers/{provider_id}/check", response_model=AvailabilityCheck)
async def check_provider_availability(
    provider_id: int,
    day: date = Query(..., alias="date"),
    start_time: str = Query(..., examples=["10:00"]),
    end_time: str = Query(..., examples=["11:00"]),
) -> AvailabilityCheck:
    try:
        return await AvailabilityService.check_availability(
            provider_id, day, check_time(start_time), check_time(end_time)
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/providers/{provider_id}/calendar", response_model=List[CalendarDay])
async def provider_calendar(
    provider_id: int,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
) -> List[CalendarDay]:
    try:
        return await AvailabilityService.get_calendar(provider_id, year, month)
    except ValueError as e:
        raise to_http_exception(e)
