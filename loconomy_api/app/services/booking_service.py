"""
Bookings: creation with conflict detection, pricing, the status
lifecycle and the per-booking message thread.

A booking copies the listing's title and prices when it is created.
Requests that cannot be placed raise :class:`BookingConflictError`
carrying a conflict type and a few suggested alternative slots.
"""

import json
import logging
import secrets
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.config import settings
from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import BookingConflictError, ConflictError, NotFoundError, PermissionDeniedError
from loconomy_api.app.schemas.booking import BookingCreate, BookingRead, BookingStats, MessageRead
from loconomy_api.app.services.audit_service import AuditService
from loconomy_api.app.services.availability_service import (
    AvailabilityService,
    build_slots,
    overlaps,
    to_hhmm,
    to_minutes,
)
from loconomy_api.app.services.notification_service import NotificationService
from loconomy_api.app.services.settings_service import SettingsService
from loconomy_api.app.services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
DEFAULT_DURATION = 60
MAX_SUGGESTIONS = 5
SUGGESTION_DAYS = 14

STATUSES = ("pending", "confirmed", "in_progress", "completed", "cancelled", "disputed")

TRANSITIONS: Dict[str, tuple] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("in_progress", "cancelled"),
    "in_progress": ("completed", "disputed"),
    "completed": ("disputed",),
    "disputed": ("completed", "cancelled"),
    "cancelled": (),
}

PROVIDER_TARGETS = ("confirmed", "in_progress", "completed", "cancelled")

TIMESTAMP_COLUMNS = {
    "confirmed": "confirmed_at",
    "in_progress": "started_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}

# status -> (notification type, title, system message)
STATUS_EVENTS = {
    "confirmed": ("booking_confirmed", "Booking confirmed", "Booking confirmed by the provider"),
    "in_progress": ("booking_started", "Service started", "The service has started"),
    "completed": ("booking_completed", "Service completed", "The service was marked as completed"),
    "cancelled": ("booking_cancelled", "Booking cancelled", "Booking cancelled"),
    "disputed": ("booking_disputed", "Booking disputed", "A dispute was opened for this booking"),
}


def calculate_price(
    pricing_type: str,
    base_price: Optional[float],
    hourly_rate: Optional[float],
    minimum_hours: Optional[float],
    duration_minutes: int,
    fee_percent: float,
) -> Dict[str, float]:
    """Price a booking.

    Hourly listings charge ``rate * max(hours, minimum_hours)``; fixed
    and custom listings charge the base price.  The service fee is a
    percentage of that amount and every figure is rounded to cents.
    """
    if pricing_type == "hourly":
        hours = max(duration_minutes / 60, minimum_hours or 0)
        amount = (hourly_rate or 0) * hours
    else:
        amount = base_price or 0
    amount = round(amount, 2)
    fee = round(amount * fee_percent / 100, 2)
    return {"base_price": amount, "service_fee": fee, "total_amount": round(amount + fee, 2)}


def generate_confirmation_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def allowed_targets(role: str, is_provider: bool, is_customer: bool, current: str) -> List[str]:
    """Statuses the caller may move a booking to from ``current``."""
    valid = TRANSITIONS.get(current, ())
    if role == "admin":
        return list(valid)
    targets = set()
    if is_provider:
        targets.update(PROVIDER_TARGETS)
    if is_customer:
        targets.add("disputed")
        if current in ("pending", "confirmed"):
            targets.add("cancelled")
    return [target for target in valid if target in targets]


def _row_to_booking(row: sqlite3.Row) -> BookingRead:
    return BookingRead(**{key: row[key] for key in row.keys()})


def _row_to_message(row: sqlite3.Row) -> MessageRead:
    return MessageRead(
        id=row["id"],
        booking_id=row["booking_id"],
        sender_id=row["sender_id"],
        message_text=row["message_text"],
        message_type=row["message_type"],
        is_system_message=bool(row["is_system_message"]),
        system_event_type=row["system_event_type"],
        read_by=json.loads(row["read_by"] or "[]"),
        created_at=row["created_at"],
    )


def _suggest_times(
    provider_id: int, start_day: date, duration: int, conn: sqlite3.Connection, now: datetime
) -> List[Dict[str, str]]:
    suggestions: List[Dict[str, str]] = []
    day = max(start_day, now.date())
    for _ in range(SUGGESTION_DAYS):
        for slot in AvailabilityService.slots_for_date(provider_id, day, duration, conn, now=now):
            suggestions.append({"date": day.isoformat(), "start_time": slot.start_time, "end_time": slot.end_time})
            if len(suggestions) >= MAX_SUGGESTIONS:
                return suggestions
        day += timedelta(days=1)
    return suggestions


def check_conflicts(
    listing: sqlite3.Row,
    day: date,
    start: int,
    end: int,
    conn: sqlite3.Connection,
    now: Optional[datetime] = None,
) -> None:
    """Raise :class:`BookingConflictError` when the slot cannot be booked."""
    now = now or datetime.now()
    provider_id = listing["provider_id"]
    duration = end - start
    today = now.date()

    if day < today or (day == today and start < now.hour * 60 + now.minute):
        raise BookingConflictError(
            "past_date",
            "Bookings cannot be made in the past",
            _suggest_times(provider_id, today, duration, conn, now),
        )
    if (day - today).days > listing["advance_booking_days"]:
        raise BookingConflictError(
            "too_far_ahead",
            f"Bookings can be made at most {listing['advance_booking_days']} days in advance",
            _suggest_times(provider_id, today, duration, conn, now),
        )

    windows = AvailabilityService.windows_for_date(provider_id, day, conn)
    if not any(w_start <= start and end <= w_end for w_start, w_end in windows):
        raise BookingConflictError(
            "outside_hours",
            "The provider is not available at this time",
            _suggest_times(provider_id, day, duration, conn, now),
        )

    busy = AvailabilityService.busy_ranges(provider_id, day, conn)
    if any(overlaps(start, end, b_start, b_end) for b_start, b_end in busy):
        not_before = now.hour * 60 + now.minute if day == today else None
        same_day = [
            {"date": day.isoformat(), "start_time": slot.start_time, "end_time": slot.end_time}
            for slot in build_slots(windows, duration, busy, not_before)
        ][:MAX_SUGGESTIONS]
        raise BookingConflictError(
            "time_overlap",
            "This time slot is already booked",
            same_day or _suggest_times(provider_id, day + timedelta(days=1), duration, conn, now),
        )

    daily_limit = listing["max_bookings_per_day"]
    if daily_limit and len(busy) >= daily_limit:
        raise BookingConflictError(
            "daily_limit",
            "The provider has no more bookings available on this day",
            _suggest_times(provider_id, day + timedelta(days=1), duration, conn, now),
        )


class BookingService:

    @classmethod
    def fetch_row(cls, booking_id: int, conn: sqlite3.Connection) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Booking {booking_id} not found")
        return row

    @staticmethod
    def _ensure_participant(row: sqlite3.Row, current_user: Dict[str, Any]) -> None:
        if current_user.get("role") == "admin":
            return
        if current_user.get("user_id") not in (row["customer_id"], row["provider_id"]):
            # Other users' bookings are reported as missing.
            raise NotFoundError(f"Booking {row['id']} not found")

    @staticmethod
    def _unique_code(conn: sqlite3.Connection) -> str:
        while True:
            code = generate_confirmation_code()
            if not conn.execute("SELECT 1 FROM bookings WHERE confirmation_code = ?", (code,)).fetchone():
                return code

    @staticmethod
    def _system_message(conn: sqlite3.Connection, booking_id: int, event_type: str, text: str) -> None:
        conn.execute(
            """
            INSERT INTO booking_messages (booking_id, sender_id, message_text, message_type, is_system_message, system_event_type)
            VALUES (?, NULL, ?, 'system', 1, ?)
            """,
            (booking_id, text, event_type),
        )

    @classmethod
    async def create_booking(
        cls, data: BookingCreate, current_user: Dict[str, Any], now: Optional[datetime] = None
    ) -> BookingRead:
        """Book a slot of an active listing for the calling user."""
        customer_id = current_user["user_id"]
        if customer_id is None:
            raise PermissionDeniedError("Service tokens cannot book on their own behalf")
        auto_confirm = bool(await SettingsService.get_value("booking_auto_confirm"))
        conn = get_connection()
        try:
            listing = conn.execute("SELECT * FROM listings WHERE id = ?", (data.listing_id,)).fetchone()
            if not listing or listing["status"] != "active":
                raise NotFoundError("Listing not found or not available for booking")
            if listing["provider_id"] == customer_id:
                raise ValueError("You cannot book your own listing")

            duration = data.duration_minutes or listing["duration_minutes"] or DEFAULT_DURATION
            start = to_minutes(data.start_time)
            end = start + duration
            if end > 24 * 60:
                raise ValueError("The booking must end on the same day")

            check_conflicts(listing, data.booking_date, start, end, conn, now)
            SubscriptionService.check_booking_limit(listing["provider_id"], conn)

            price = calculate_price(
                listing["pricing_type"],
                listing["base_price"],
                listing["hourly_rate"],
                listing["minimum_hours"],
                duration,
                settings.service_fee_percent,
            )
            status = "confirmed" if auto_confirm else "pending"
            cursor = conn.execute(
                """
                INSERT INTO bookings (listing_id, provider_id, customer_id, booking_date, start_time, end_time,
                    duration_minutes, service_title, special_requests, base_price, service_fee, total_amount,
                    currency, status, confirmation_code, customer_notes, location_type, confirmed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    listing["id"],
                    listing["provider_id"],
                    customer_id,
                    data.booking_date.isoformat(),
                    data.start_time,
                    to_hhmm(end),
                    duration,
                    listing["title"],
                    data.special_requests,
                    price["base_price"],
                    price["service_fee"],
                    price["total_amount"],
                    settings.default_currency,
                    status,
                    cls._unique_code(conn),
                    data.customer_notes,
                    listing["location_type"],
                    datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S") if auto_confirm else None,
                ),
            )
            booking_id = cursor.lastrowid
            cls._system_message(conn, booking_id, "booking_created", "Booking requested")
            await NotificationService.notify(
                listing["provider_id"],
                "booking_request",
                "New booking request",
                f"{listing['title']} on {data.booking_date.isoformat()} at {data.start_time}",
                booking_id,
                conn=conn,
            )
            if auto_confirm:
                cls._system_message(conn, booking_id, "confirmed", STATUS_EVENTS["confirmed"][2])
                await NotificationService.notify(
                    customer_id,
                    "booking_confirmed",
                    "Booking confirmed",
                    f"{listing['title']} on {data.booking_date.isoformat()} at {data.start_time}",
                    booking_id,
                    conn=conn,
                )
            conn.commit()
            row = cls.fetch_row(booking_id, conn)
        finally:
            conn.close()
        logger.info("Booking %s (%s) created for listing %s", booking_id, row["confirmation_code"], data.listing_id)
        await AuditService.log(
            customer_id,
            "create",
            "booking",
            booking_id,
            {"listing_id": data.listing_id, "status": status, "total_amount": price["total_amount"]},
        )
        return _row_to_booking(row)

    @classmethod
    async def update_status(
        cls,
        booking_id: int,
        new_status: str,
        current_user: Dict[str, Any],
        reason: Optional[str] = None,
        provider_notes: Optional[str] = None,
    ) -> BookingRead:
        """Move a booking along its lifecycle.

        Providers confirm, start, complete and cancel; customers cancel
        pending or confirmed bookings and open disputes; admins may take
        any valid step.  The other party is notified.
        """
        user_id = current_user.get("user_id")
        conn = get_connection()
        try:
            row = cls.fetch_row(booking_id, conn)
            cls._ensure_participant(row, current_user)
            current = row["status"]
            if new_status not in TRANSITIONS.get(current, ()):
                raise ConflictError(f"Cannot change booking status from {current} to {new_status}")
            targets = allowed_targets(
                current_user.get("role"), row["provider_id"] == user_id, row["customer_id"] == user_id, current
            )
            if new_status not in targets:
                raise PermissionDeniedError(f"You are not allowed to mark this booking as {new_status}")

            columns = ["status = ?", "updated_at = CURRENT_TIMESTAMP"]
            values: List[Any] = [new_status]
            timestamp_column = TIMESTAMP_COLUMNS.get(new_status)
            if timestamp_column:
                columns.append(f"{timestamp_column} = CURRENT_TIMESTAMP")
            if new_status == "cancelled":
                columns.append("cancellation_reason = ?")
                values.append(reason)
            if provider_notes is not None and row["provider_id"] == user_id:
                columns.append("provider_notes = ?")
                values.append(provider_notes)
            conn.execute(f"UPDATE bookings SET {', '.join(columns)} WHERE id = ?", (*values, booking_id))
            if new_status == "completed" and row["completed_at"] is None:
                conn.execute(
                    "UPDATE listings SET booking_count = booking_count + 1 WHERE id = ?", (row["listing_id"],)
                )

            type_, title, text = STATUS_EVENTS[new_status]
            cls._system_message(conn, booking_id, new_status, f"{text}: {reason}" if reason else text)
            recipients = [pid for pid in (row["customer_id"], row["provider_id"]) if pid != user_id]
            for recipient in recipients:
                await NotificationService.notify(
                    recipient,
                    type_,
                    title,
                    f"{row['service_title']} on {row['booking_date']} at {row['start_time']}",
                    booking_id,
                    conn=conn,
                )
            conn.commit()
            row = cls.fetch_row(booking_id, conn)
        finally:
            conn.close()
        logger.info("Booking %s status %s -> %s by user %s", booking_id, current, new_status, user_id)
        await AuditService.log(
            user_id, "status_change", "booking", booking_id, {"from": current, "to": new_status, "reason": reason}
        )
        return _row_to_booking(row)

    @classmethod
    async def list_bookings(
        cls,
        current_user: Dict[str, Any],
        statuses: Optional[List[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        listing_id: Optional[int] = None,
        as_role: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[BookingRead]:
        """Bookings visible to the caller, newest first.

        ``as_role`` narrows a user's bookings to those made as
        ``customer`` or received as ``provider``.  Admins see all.
        """
        user_id = current_user.get("user_id")
        clauses: List[str] = []
        params: List[Any] = []
        if as_role == "customer":
            clauses.append("customer_id = ?")
            params.append(user_id)
        elif as_role == "provider":
            clauses.append("provider_id = ?")
            params.append(user_id)
        elif as_role is not None:
            raise ValueError("as_role must be 'customer' or 'provider'")
        elif current_user.get("role") != "admin":
            clauses.append("(customer_id = ? OR provider_id = ?)")
            params.extend([user_id, user_id])
        if statuses:
            invalid = [s for s in statuses if s not in STATUSES]
            if invalid:
                raise ValueError(f"Invalid booking status: {', '.join(invalid)}")
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if date_from:
            clauses.append("booking_date >= ?")
            params.append(date_from.isoformat())
        if date_to:
            clauses.append("booking_date <= ?")
            params.append(date_to.isoformat())
        if listing_id is not None:
            clauses.append("listing_id = ?")
            params.append(listing_id)
        query = "SELECT * FROM bookings"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY booking_date DESC, start_time DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        return [_row_to_booking(row) for row in rows]

    @classmethod
    async def get_booking(cls, booking_id: int, current_user: Dict[str, Any]) -> BookingRead:
        conn = get_connection()
        try:
            row = cls.fetch_row(booking_id, conn)
        finally:
            conn.close()
        cls._ensure_participant(row, current_user)
        return _row_to_booking(row)

    @classmethod
    async def get_by_code(cls, code: str, current_user: Dict[str, Any]) -> BookingRead:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM bookings WHERE confirmation_code = ?", (code.strip().upper(),)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError("Booking not found")
        cls._ensure_participant(row, current_user)
        return _row_to_booking(row)

    @classmethod
    async def stats(cls, user_id: int, as_provider: bool, today: Optional[date] = None) -> BookingStats:
        """Booking totals for a provider (received) or a customer (made).

        Revenue only counts completed bookings.
        """
        column = "provider_id" if as_provider else "customer_id"
        month_prefix = (today or date.today()).strftime("%Y-%m")
        conn = get_connection()
        try:
            rows = conn.execute(
                f"SELECT status, booking_date, total_amount FROM bookings WHERE {column} = ?", (user_id,)
            ).fetchall()
        finally:
            conn.close()
        by_status = {status: 0 for status in STATUSES}
        revenue = month_revenue = 0.0
        month_count = 0
        for row in rows:
            by_status[row["status"]] += 1
            this_month = row["booking_date"].startswith(month_prefix)
            if this_month:
                month_count += 1
            if row["status"] == "completed":
                revenue += row["total_amount"]
                if this_month:
                    month_revenue += row["total_amount"]
        return BookingStats(
            total_bookings=len(rows),
            by_status=by_status,
            pending_bookings=by_status["pending"],
            confirmed_bookings=by_status["confirmed"],
            completed_bookings=by_status["completed"],
            cancelled_bookings=by_status["cancelled"],
            total_revenue=round(revenue, 2),
            this_month_bookings=month_count,
            this_month_revenue=round(month_revenue, 2),
        )

    @classmethod
    async def list_messages(cls, booking_id: int, current_user: Dict[str, Any]) -> List[MessageRead]:
        conn = get_connection()
        try:
            cls._ensure_participant(cls.fetch_row(booking_id, conn), current_user)
            rows = conn.execute(
                "SELECT * FROM booking_messages WHERE booking_id = ? ORDER BY created_at, id", (booking_id,)
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_message(row) for row in rows]

    @classmethod
    async def send_message(cls, booking_id: int, text: str, current_user: Dict[str, Any]) -> MessageRead:
        sender_id = current_user.get("user_id")
        conn = get_connection()
        try:
            cls._ensure_participant(cls.fetch_row(booking_id, conn), current_user)
            cursor = conn.execute(
                "INSERT INTO booking_messages (booking_id, sender_id, message_text, read_by) VALUES (?, ?, ?, ?)",
                (booking_id, sender_id, text.strip(), json.dumps([sender_id])),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM booking_messages WHERE id = ?", (cursor.lastrowid,)).fetchone()
        finally:
            conn.close()
        return _row_to_message(row)

    @classmethod
    async def mark_messages_read(cls, booking_id: int, current_user: Dict[str, Any]) -> int:
        """Add the caller to ``read_by`` of every message in the thread."""
        user_id = current_user.get("user_id")
        updated = 0
        conn = get_connection()
        try:
            cls._ensure_participant(cls.fetch_row(booking_id, conn), current_user)
            rows = conn.execute(
                "SELECT id, read_by FROM booking_messages WHERE booking_id = ?", (booking_id,)
            ).fetchall()
            for row in rows:
                readers = json.loads(row["read_by"] or "[]")
                if user_id in readers:
                    continue
                readers.append(user_id)
                conn.execute("UPDATE booking_messages SET read_by = ? WHERE id = ?", (json.dumps(readers), row["id"]))
                updated += 1
            conn.commit()
        finally:
            conn.close()
        return updated
