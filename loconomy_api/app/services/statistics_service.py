"""
Service layer for statistics and dashboards.

This module aggregates marketplace metrics for three audiences:
administrators get a platform overview, providers a dashboard of their
bookings and reviews, and customers a summary of their booking
history.  All queries are read-only.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.rbac import ROLE_NAMES
from loconomy_api.app.services.booking_service import STATUSES as BOOKING_STATUSES
from loconomy_api.app.services.booking_service import BookingService
from loconomy_api.app.services.listing_service import STATUSES as LISTING_STATUSES
from loconomy_api.app.services.review_service import ReviewService


logger = logging.getLogger(__name__)


def _counts(rows, keys) -> Dict[str, int]:
    counts = {key: 0 for key in keys}
    for row in rows:
        counts[row[0]] = row[1]
    return counts


class StatisticsService:
    """Service providing aggregated statistics."""

    @classmethod
    async def overview(cls) -> Dict[str, Any]:
        """Return high-level platform metrics for administrators.

        Revenue is the sum of completed bookings; the platform's share
        is the service fees on those bookings.  Disabled users are
        excluded from the role breakdown.
        """
        conn = get_connection()
        try:
            cursor = conn.cursor()
            users_by_role = {name: 0 for name in ROLE_NAMES.values()}
            for role_id, count in cursor.execute(
                "SELECT role_id, COUNT(*) FROM users WHERE disabled = 0 GROUP BY role_id"
            ).fetchall():
                users_by_role[ROLE_NAMES.get(role_id, str(role_id))] = count
            listings_by_status = _counts(
                cursor.execute("SELECT status, COUNT(*) FROM listings GROUP BY status").fetchall(), LISTING_STATUSES
            )
            bookings_by_status = _counts(
                cursor.execute("SELECT status, COUNT(*) FROM bookings GROUP BY status").fetchall(), BOOKING_STATUSES
            )
            revenue, fees = cursor.execute(
                "SELECT COALESCE(SUM(total_amount), 0), COALESCE(SUM(service_fee), 0) FROM bookings WHERE status = 'completed'"
            ).fetchone()
            pending_reviews = cursor.execute(
                "SELECT COUNT(*) FROM reviews WHERE approved = 0 AND moderated_by IS NULL"
            ).fetchone()[0]
            active_subscriptions = cursor.execute(
                "SELECT COUNT(*) FROM user_subscriptions WHERE status IN ('trialing', 'active')"
            ).fetchone()[0]
            workspaces = cursor.execute("SELECT COUNT(*) FROM workspaces").fetchone()[0]
        finally:
            conn.close()
        return {
            "users_total": sum(users_by_role.values()),
            "users_by_role": users_by_role,
            "listings_by_status": listings_by_status,
            "bookings_by_status": bookings_by_status,
            "total_revenue": round(revenue, 2),
            "platform_fees": round(fees, 2),
            "pending_moderation": {
                "listings": listings_by_status["pending"],
                "reviews": pending_reviews,
            },
            "active_subscriptions": active_subscriptions,
            "workspaces_count": workspaces,
        }

    @classmethod
    async def provider_dashboard(cls, provider_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        """Today's agenda, upcoming work, pending requests and recent reviews."""
        today = today or date.today()
        conn = get_connection()
        try:
            cursor = conn.cursor()
            todays = cursor.execute(
                """
                SELECT * FROM bookings WHERE provider_id = ? AND booking_date = ?
                  AND status IN ('pending', 'confirmed', 'in_progress')
                ORDER BY start_time
                """,
                (provider_id, today.isoformat()),
            ).fetchall()
            upcoming = cursor.execute(
                """
                SELECT * FROM bookings WHERE provider_id = ? AND booking_date > ? AND status = 'confirmed'
                ORDER BY booking_date, start_time LIMIT 10
                """,
                (provider_id, today.isoformat()),
            ).fetchall()
            pending = cursor.execute(
                "SELECT * FROM bookings WHERE provider_id = ? AND status = 'pending' ORDER BY booking_date, start_time",
                (provider_id,),
            ).fetchall()
            active_listings = cursor.execute(
                "SELECT COUNT(*) FROM listings WHERE provider_id = ? AND status = 'active'", (provider_id,)
            ).fetchone()[0]
        finally:
            conn.close()
        stats = await BookingService.stats(provider_id, as_provider=True, today=today)
        return {
            "today_bookings": [dict(row) for row in todays],
            "upcoming_bookings": [dict(row) for row in upcoming],
            "pending_requests": [dict(row) for row in pending],
            "active_listings": active_listings,
            "stats": stats.model_dump(),
            "rating": (await ReviewService.rating_summary(reviewee_id=provider_id)).model_dump(),
            "recent_reviews": [
                review.model_dump() for review in await ReviewService.list_reviews(reviewee_id=provider_id, limit=5)
            ],
        }

    @classmethod
    async def customer_history(cls, customer_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        """Upcoming and past bookings with spending and favourite providers."""
        today = today or date.today()
        conn = get_connection()
        try:
            cursor = conn.cursor()
            upcoming = cursor.execute(
                """
                SELECT * FROM bookings WHERE customer_id = ? AND booking_date >= ?
                  AND status IN ('pending', 'confirmed', 'in_progress')
                ORDER BY booking_date, start_time
                """,
                (customer_id, today.isoformat()),
            ).fetchall()
            past = cursor.execute(
                """
                SELECT * FROM bookings WHERE customer_id = ?
                  AND (booking_date < ? OR status IN ('completed', 'cancelled', 'disputed'))
                ORDER BY booking_date DESC, start_time DESC LIMIT 20
                """,
                (customer_id, today.isoformat()),
            ).fetchall()
            total_spent = cursor.execute(
                "SELECT COALESCE(SUM(total_amount), 0) FROM bookings WHERE customer_id = ? AND status = 'completed'",
                (customer_id,),
            ).fetchone()[0]
            favourites = cursor.execute(
                """
                SELECT b.provider_id, u.full_name, COUNT(*) AS bookings
                FROM bookings b JOIN users u ON u.id = b.provider_id
                WHERE b.customer_id = ? AND b.status = 'completed'
                GROUP BY b.provider_id, u.full_name
                ORDER BY bookings DESC, b.provider_id LIMIT 5
                """,
                (customer_id,),
            ).fetchall()
            average_given = cursor.execute(
                "SELECT AVG(rating) FROM reviews WHERE reviewer_id = ?", (customer_id,)
            ).fetchone()[0]
        finally:
            conn.close()
        favourite_providers: List[Dict[str, Any]] = [
            {"provider_id": row["provider_id"], "name": row["full_name"], "bookings": row["bookings"]}
            for row in favourites
        ]
        return {
            "upcoming_bookings": [dict(row) for row in upcoming],
            "past_bookings": [dict(row) for row in past],
            "total_spent": round(total_spent, 2),
            "favourite_providers": favourite_providers,
            "average_rating_given": round(average_given, 2) if average_given is not None else None,
        }
