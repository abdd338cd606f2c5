"""
Provider calendars: weekly hours, date overrides and bookable slots.

Windows for a day come either from the provider's weekly schedule or,
when the day has overrides, from its ``available`` overrides (an all-day
``available`` override keeps the weekly hours).  ``blocked`` and
``break`` overrides are then cut out of the windows; an all-day block
leaves nothing.  Slots are cut from the windows in steps of the
requested duration and must not overlap an active booking.
"""

import calendar
import logging
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import NotFoundError
from loconomy_api.app.schemas.availability import (
    AvailabilityCheck,
    CalendarBooking,
    CalendarDay,
    OverrideCreate,
    OverrideRead,
    TimeSlot,
    WeeklyHours,
    WeeklyHoursRead,
)
from loconomy_api.app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed", "in_progress")

Window = Tuple[int, int]


def to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def to_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_name(day: date) -> str:
    return DAYS[day.weekday()]


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    return start_a < end_b and start_b < end_a


def _merge(windows: Iterable[Window]) -> List[Window]:
    merged: List[Window] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _subtract(windows: List[Window], start: int, end: int) -> List[Window]:
    result: List[Window] = []
    for w_start, w_end in windows:
        if not overlaps(w_start, w_end, start, end):
            result.append((w_start, w_end))
            continue
        if w_start < start:
            result.append((w_start, start))
        if end < w_end:
            result.append((end, w_end))
    return result


def compute_windows(weekly: Sequence[Dict[str, Any]], overrides: Sequence[Dict[str, Any]]) -> List[Window]:
    """Bookable ``(start, end)`` minute ranges for one day.

    ``weekly`` holds the schedule rows for the weekday in question and
    ``overrides`` the override rows for the date.
    """
    regular = [
        (to_minutes(row["start_time"]), to_minutes(row["end_time"])) for row in weekly if row["is_available"]
    ]
    if overrides:
        windows: List[Window] = []
        for override in overrides:
            if override["availability_type"] != "available":
                continue
            if override["start_time"] and override["end_time"]:
                windows.append((to_minutes(override["start_time"]), to_minutes(override["end_time"])))
            else:
                windows.extend(regular)
    else:
        windows = regular
    windows = _merge(windows)
    for override in overrides:
        if override["availability_type"] == "available":
            continue
        if not (override["start_time"] and override["end_time"]):
            return []
        windows = _subtract(windows, to_minutes(override["start_time"]), to_minutes(override["end_time"]))
    return windows


def build_slots(
    windows: Sequence[Window],
    duration: int,
    busy: Sequence[Window] = (),
    not_before: Optional[int] = None,
) -> List[TimeSlot]:
    """Step through ``windows`` by ``duration`` minutes.

    Slots overlapping a ``busy`` range or starting before ``not_before``
    are dropped.
    """
    slots: List[TimeSlot] = []
    for start, end in windows:
        cursor = start
        while cursor + duration <= end:
            slot_end = cursor + duration
            free = not any(overlaps(cursor, slot_end, b_start, b_end) for b_start, b_end in busy)
            if free and (not_before is None or cursor >= not_before):
                slots.append(TimeSlot(start_time=to_hhmm(cursor), end_time=to_hhmm(slot_end)))
            cursor = slot_end
    return slots


def _row_to_hours(row: sqlite3.Row) -> WeeklyHoursRead:
    return WeeklyHoursRead(
        id=row["id"],
        provider_id=row["provider_id"],
        day_of_week=row["day_of_week"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        is_available=bool(row["is_available"]),
        break_duration_minutes=row["break_duration_minutes"],
    )


def _row_to_override(row: sqlite3.Row) -> OverrideRead:
    return OverrideRead(
        id=row["id"],
        provider_id=row["provider_id"],
        date=row["date"],
        availability_type=row["availability_type"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        reason=row["reason"],
    )


class AvailabilityService:

    @classmethod
    async def get_weekly_hours(cls, provider_id: int) -> List[WeeklyHoursRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM provider_availability WHERE provider_id = ? ORDER BY id", (provider_id,)
            ).fetchall()
        finally:
            conn.close()
        hours = [_row_to_hours(row) for row in rows]
        return sorted(hours, key=lambda h: (DAYS.index(h.day_of_week), h.start_time))

    @classmethod
    async def set_weekly_hours(cls, provider_id: int, hours: List[WeeklyHours]) -> List[WeeklyHoursRead]:
        """Replace the provider's weekly schedule.

        Rows of the same day must not overlap.
        """
        by_day: Dict[str, List[Window]] = {}
        for item in hours:
            window = (to_minutes(item.start_time), to_minutes(item.end_time))
            for other in by_day.get(item.day_of_week, []):
                if overlaps(window[0], window[1], other[0], other[1]):
                    raise ValueError(f"Overlapping hours on {item.day_of_week}")
            by_day.setdefault(item.day_of_week, []).append(window)

        conn = get_connection()
        try:
            conn.execute("DELETE FROM provider_availability WHERE provider_id = ?", (provider_id,))
            conn.executemany(
                """
                INSERT INTO provider_availability
                    (provider_id, day_of_week, start_time, end_time, is_available, break_duration_minutes)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        provider_id,
                        item.day_of_week,
                        item.start_time,
                        item.end_time,
                        1 if item.is_available else 0,
                        item.break_duration_minutes,
                    )
                    for item in hours
                ],
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Weekly hours of provider %s replaced (%s rows)", provider_id, len(hours))
        await AuditService.log(provider_id, "update", "availability", provider_id, {"rows": len(hours)})
        return await cls.get_weekly_hours(provider_id)

    @classmethod
    async def add_override(cls, provider_id: int, data: OverrideCreate) -> OverrideRead:
        conn = get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO availability_overrides (provider_id, date, start_time, end_time, availability_type, reason)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    provider_id,
                    data.date.isoformat(),
                    data.start_time,
                    data.end_time,
                    data.availability_type,
                    data.reason,
                ),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM availability_overrides WHERE id = ?", (cursor.lastrowid,)).fetchone()
        finally:
            conn.close()
        await AuditService.log(
            provider_id, "create", "availability_override", row["id"], {"date": row["date"], "type": row["availability_type"]}
        )
        return _row_to_override(row)

    @classmethod
    async def list_overrides(
        cls, provider_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> List[OverrideRead]:
        query = "SELECT * FROM availability_overrides WHERE provider_id = ?"
        params: List[Any] = [provider_id]
        if date_from:
            query += " AND date >= ?"
            params.append(date_from.isoformat())
        if date_to:
            query += " AND date <= ?"
            params.append(date_to.isoformat())
        query += " ORDER BY date, start_time"
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        return [_row_to_override(row) for row in rows]

    @classmethod
    async def remove_override(cls, provider_id: int, override_id: int, is_admin: bool = False) -> None:
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM availability_overrides WHERE id = ?", (override_id,)).fetchone()
            if not row or (row["provider_id"] != provider_id and not is_admin):
                raise NotFoundError("Override not found")
            conn.execute("DELETE FROM availability_overrides WHERE id = ?", (override_id,))
            conn.commit()
        finally:
            conn.close()
        await AuditService.log(provider_id, "delete", "availability_override", override_id, None)

    @classmethod
    def windows_for_date(cls, provider_id: int, day: date, conn: sqlite3.Connection) -> List[Window]:
        weekly = conn.execute(
            "SELECT * FROM provider_availability WHERE provider_id = ? AND day_of_week = ?",
            (provider_id, day_name(day)),
        ).fetchall()
        overrides = conn.execute(
            "SELECT * FROM availability_overrides WHERE provider_id = ? AND date = ?",
            (provider_id, day.isoformat()),
        ).fetchall()
        return compute_windows(weekly, overrides)

    @classmethod
    def busy_ranges(
        cls, provider_id: int, day: date, conn: sqlite3.Connection, exclude_booking_id: Optional[int] = None
    ) -> List[Window]:
        """Minute ranges taken by the provider's active bookings on ``day``."""
        placeholders = ", ".join("?" for _ in ACTIVE_BOOKING_STATUSES)
        rows = conn.execute(
            f"""
            SELECT id, start_time, end_time FROM bookings
            WHERE provider_id = ? AND booking_date = ? AND status IN ({placeholders})
            """,
            (provider_id, day.isoformat(), *ACTIVE_BOOKING_STATUSES),
        ).fetchall()
        return [
            (to_minutes(row["start_time"]), to_minutes(row["end_time"]))
            for row in rows
            if row["id"] != exclude_booking_id
        ]

    @classmethod
    def slots_for_date(
        cls,
        provider_id: int,
        day: date,
        duration: int,
        conn: sqlite3.Connection,
        now: Optional[datetime] = None,
    ) -> List[TimeSlot]:
        now = now or datetime.now()
        if day < now.date():
            return []
        not_before = now.hour * 60 + now.minute if day == now.date() else None
        windows = cls.windows_for_date(provider_id, day, conn)
        return build_slots(windows, duration, cls.busy_ranges(provider_id, day, conn), not_before)

    @classmethod
    async def get_available_slots(cls, provider_id: int, day: date, duration: int = 60) -> List[TimeSlot]:
        if duration <= 0:
            raise ValueError("Slot duration must be positive")
        conn = get_connection()
        try:
            return cls.slots_for_date(provider_id, day, duration, conn)
        finally:
            conn.close()

    @classmethod
    async def check_availability(cls, provider_id: int, day: date, start_time: str, end_time: str) -> AvailabilityCheck:
        """Whether ``start_time``-``end_time`` fits a window and is free."""
        start, end = to_minutes(start_time), to_minutes(end_time)
        if start >= end:
            raise ValueError("start_time must be before end_time")
        conn = get_connection()
        try:
            windows = cls.windows_for_date(provider_id, day, conn)
            busy = cls.busy_ranges(provider_id, day, conn)
        finally:
            conn.close()
        inside = any(w_start <= start and end <= w_end for w_start, w_end in windows)
        free = not any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy)
        return AvailabilityCheck(date=day, start_time=start_time, end_time=end_time, available=inside and free)

    @classmethod
    async def get_calendar(
        cls, provider_id: int, year: int, month: int, today: Optional[date] = None
    ) -> List[CalendarDay]:
        """Month view of the provider's bookings and free slots."""
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")
        today = today or date.today()
        last_day = calendar.monthrange(year, month)[1]
        first, last = date(year, month, 1), date(year, month, last_day)

        now = datetime.now() if today == date.today() else datetime.combine(today, datetime.min.time())

        conn = get_connection()
        try:
            bookings = conn.execute(
                """
                SELECT id, booking_date, start_time, end_time, status, service_title FROM bookings
                WHERE provider_id = ? AND booking_date BETWEEN ? AND ?
                ORDER BY booking_date, start_time
                """,
                (provider_id, first.isoformat(), last.isoformat()),
            ).fetchall()
            days: List[CalendarDay] = []
            for number in range(1, last_day + 1):
                day = date(year, month, number)
                windows = cls.windows_for_date(provider_id, day, conn)
                is_past = day < today
                slots: List[TimeSlot] = []
                if windows and not is_past:
                    slots = cls.slots_for_date(provider_id, day, 60, conn, now=now)
                days.append(
                    CalendarDay(
                        date=day,
                        day_of_week=day_name(day),
                        is_today=day == today,
                        is_past=is_past,
                        has_availability=bool(windows),
                        bookings=[
                            CalendarBooking(
                                id=row["id"],
                                start_time=row["start_time"],
                                end_time=row["end_time"],
                                status=row["status"],
                                service_title=row["service_title"],
                            )
                            for row in bookings
                            if row["booking_date"] == day.isoformat()
                        ],
                        available_slots=slots,
                    )
                )
        finally:
            conn.close()
        return days
