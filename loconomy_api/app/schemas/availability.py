"""
Pydantic models for provider calendars.

Times are ``HH:MM`` strings in the provider's local time and dates are
ISO ``YYYY-MM-DD``.
"""

import re
from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


DayOfWeek = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
OverrideType = Literal["available", "blocked", "break"]

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def check_time(value: str) -> str:
    if not _TIME_RE.match(value):
        raise ValueError("Time must use the HH:MM format")
    return value


class WeeklyHours(BaseModel):
    day_of_week: DayOfWeek
    start_time: str = Field(..., examples=["09:00"])
    end_time: str = Field(..., examples=["17:00"])
    is_available: bool = True
    break_duration_minutes: int = Field(0, ge=0, le=240)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return check_time(v)

    @model_validator(mode="after")
    def check_order(self) -> "WeeklyHours":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class WeeklyHoursRead(WeeklyHours):
    id: int
    provider_id: int


class AvailabilitySet(BaseModel):
    """Replaces the provider's whole weekly schedule."""

    hours: List[WeeklyHours]


class OverrideCreate(BaseModel):
    date: date
    availability_type: OverrideType
    start_time: Optional[str] = Field(None, description="Omit both times for an all-day override")
    end_time: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        return check_time(v) if v is not None else None

    @model_validator(mode="after")
    def check_range(self) -> "OverrideCreate":
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time is not None and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class OverrideRead(BaseModel):
    id: int
    provider_id: int
    date: date
    availability_type: OverrideType
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None


class TimeSlot(BaseModel):
    start_time: str
    end_time: str
    available: bool = True


class AvailabilityCheck(BaseModel):
    date: date
    start_time: str
    end_time: str
    available: bool


class CalendarBooking(BaseModel):
    id: int
    start_time: str
    end_time: str
    status: str
    service_title: str


class CalendarDay(BaseModel):
    date: date
    day_of_week: DayOfWeek
    is_today: bool
    is_past: bool
    has_availability: bool
    bookings: List[CalendarBooking]
    available_slots: List[TimeSlot]
