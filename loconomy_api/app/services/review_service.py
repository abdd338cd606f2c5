"""
Service layer for booking reviews.

Both parties of a completed booking may review each other once.  New
reviews stay hidden until an administrator approves them, unless the
``review_auto_approve`` setting is on.  Review text is HTML-escaped
whenever it leaves the service.
"""

import html
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from loconomy_api.app.schemas.review import RatingSummary, ReviewCreate, ReviewRead
from loconomy_api.app.services.audit_service import AuditService
from loconomy_api.app.services.notification_service import NotificationService
from loconomy_api.app.services.settings_service import SettingsService


logger = logging.getLogger(__name__)

_SELECT = "SELECT r.*, u.full_name AS reviewer_name FROM reviews r JOIN users u ON u.id = r.reviewer_id"


def _row_to_review(row: sqlite3.Row) -> ReviewRead:
    return ReviewRead(
        id=row["id"],
        booking_id=row["booking_id"],
        listing_id=row["listing_id"],
        reviewer_id=row["reviewer_id"],
        reviewee_id=row["reviewee_id"],
        reviewer_name=row["reviewer_name"],
        rating=row["rating"],
        review_text=html.escape(row["review_text"]) if row["review_text"] else None,
        category_ratings=json.loads(row["category_ratings"]) if row["category_ratings"] else None,
        is_public=bool(row["is_public"]),
        approved=bool(row["approved"]),
        moderated_by=row["moderated_by"],
        created_at=row["created_at"],
    )


def summarize_ratings(ratings: List[int]) -> RatingSummary:
    distribution = {score: 0 for score in range(1, 6)}
    for rating in ratings:
        distribution[rating] += 1
    average = round(sum(ratings) / len(ratings), 2) if ratings else 0.0
    return RatingSummary(average=average, count=len(ratings), distribution=distribution)


class ReviewService:
    """Service for creating, moderating and listing reviews."""

    @classmethod
    async def create_review(cls, data: ReviewCreate, current_user: Dict[str, Any]) -> ReviewRead:
        reviewer_id = current_user["user_id"]
        auto_approve = bool(await SettingsService.get_value("review_auto_approve"))
        conn = get_connection()
        try:
            booking = conn.execute("SELECT * FROM bookings WHERE id = ?", (data.booking_id,)).fetchone()
            if not booking:
                raise NotFoundError("Booking not found")
            if reviewer_id == booking["customer_id"]:
                reviewee_id = booking["provider_id"]
            elif reviewer_id == booking["provider_id"]:
                reviewee_id = booking["customer_id"]
            else:
                raise PermissionDeniedError("Only participants of the booking can review it")
            if booking["status"] != "completed":
                raise ValueError("Only completed bookings can be reviewed")
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO reviews (booking_id, listing_id, reviewer_id, reviewee_id, rating, review_text,
                        category_ratings, is_public, approved)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        booking["id"],
                        booking["listing_id"],
                        reviewer_id,
                        reviewee_id,
                        data.rating,
                        data.review_text,
                        json.dumps(data.category_ratings) if data.category_ratings else None,
                        1 if data.is_public else 0,
                        1 if auto_approve else 0,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("You have already reviewed this booking") from exc
            review_id = cursor.lastrowid
            await NotificationService.notify(
                reviewee_id,
                "review_received",
                "New review",
                f"You received a {data.rating}-star review for {booking['service_title']}",
                booking["id"],
                conn=conn,
            )
            conn.commit()
            row = conn.execute(f"{_SELECT} WHERE r.id = ?", (review_id,)).fetchone()
        finally:
            conn.close()
        logger.info("Review %s created for booking %s", review_id, data.booking_id)
        await AuditService.log(reviewer_id, "create", "review", review_id, {"rating": data.rating})
        return _row_to_review(row)

    @classmethod
    async def list_reviews(
        cls,
        listing_id: Optional[int] = None,
        reviewee_id: Optional[int] = None,
        approved_only: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ReviewRead]:
        """Reviews of a listing or a user, newest first.

        The public listing only includes approved, public reviews.
        """
        clauses: List[str] = []
        params: List[Any] = []
        if listing_id is not None:
            clauses.append("r.listing_id = ?")
            params.append(listing_id)
        if reviewee_id is not None:
            clauses.append("r.reviewee_id = ?")
            params.append(reviewee_id)
        if approved_only:
            clauses.append("r.approved = 1 AND r.is_public = 1")
        query = _SELECT
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY r.created_at DESC, r.id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        return [_row_to_review(row) for row in rows]

    @classmethod
    async def list_pending(cls, limit: int = 50, offset: int = 0) -> List[ReviewRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                f"{_SELECT} WHERE r.approved = 0 AND r.moderated_by IS NULL ORDER BY r.created_at, r.id LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_review(row) for row in rows]

    @classmethod
    async def get_booking_reviews(cls, booking_id: int, current_user: Dict[str, Any]) -> List[ReviewRead]:
        conn = get_connection()
        try:
            booking = conn.execute(
                "SELECT customer_id, provider_id FROM bookings WHERE id = ?", (booking_id,)
            ).fetchone()
            participant = booking is not None and current_user.get("user_id") in (
                booking["customer_id"],
                booking["provider_id"],
            )
            if not booking or not (participant or current_user.get("role") == "admin"):
                raise NotFoundError("Booking not found")
            rows = conn.execute(f"{_SELECT} WHERE r.booking_id = ? ORDER BY r.id", (booking_id,)).fetchall()
        finally:
            conn.close()
        return [_row_to_review(row) for row in rows]

    @classmethod
    async def moderate(cls, review_id: int, approved: bool, moderator_id: Optional[int]) -> ReviewRead:
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE reviews SET approved = ?, moderated_by = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (1 if approved else 0, moderator_id, review_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Review not found")
            conn.commit()
            row = conn.execute(f"{_SELECT} WHERE r.id = ?", (review_id,)).fetchone()
        finally:
            conn.close()
        await AuditService.log(moderator_id, "moderate", "review", review_id, {"approved": approved})
        return _row_to_review(row)

    @classmethod
    async def delete_review(cls, review_id: int, current_user: Dict[str, Any]) -> None:
        conn = get_connection()
        try:
            row = conn.execute("SELECT reviewer_id FROM reviews WHERE id = ?", (review_id,)).fetchone()
            if not row:
                raise NotFoundError("Review not found")
            if current_user.get("role") != "admin" and row["reviewer_id"] != current_user.get("user_id"):
                raise PermissionDeniedError("You can only delete your own reviews")
            conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
            conn.commit()
        finally:
            conn.close()
        await AuditService.log(current_user.get("user_id"), "delete", "review", review_id, None)

    @classmethod
    async def rating_summary(
        cls, listing_id: Optional[int] = None, reviewee_id: Optional[int] = None
    ) -> RatingSummary:
        """Average, count and 1-5 histogram over approved, public reviews."""
        if listing_id is None and reviewee_id is None:
            raise ValueError("listing_id or reviewee_id is required")
        column, value = ("listing_id", listing_id) if listing_id is not None else ("reviewee_id", reviewee_id)
        conn = get_connection()
        try:
            rows = conn.execute(
                f"SELECT rating FROM reviews WHERE {column} = ? AND approved = 1 AND is_public = 1", (value,)
            ).fetchall()
        finally:
            conn.close()
        return summarize_ratings([row["rating"] for row in rows])
