"""
Business logic for service listings.

Providers create listings as drafts and submit them for review.
Submitted listings wait in ``pending`` until an administrator approves
or rejects them, unless the ``listing_auto_approve`` setting publishes
them immediately.  Only ``active`` listings appear in the public search
and can be booked.
"""

import json
import logging
import math
import sqlite3
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection, like_pattern
from loconomy_api.app.core.errors import NotFoundError, PermissionDeniedError
from loconomy_api.app.schemas.listing import (
    CategoryRead,
    ListingCreate,
    ListingRead,
    ListingSearchResult,
    ListingStats,
    ListingUpdate,
)
from loconomy_api.app.services.audit_service import AuditService
from loconomy_api.app.services.settings_service import SettingsService
from loconomy_api.app.services.subscription_service import SubscriptionService
from loconomy_api.app.services.workspace_service import WorkspaceService


logger = logging.getLogger(__name__)

LISTING_CATEGORIES = [
    "Home Maintenance",
    "Cleaning Services",
    "Landscaping",
    "Pet Care",
    "Personal Training",
    "Tutoring",
    "Photography",
    "Event Planning",
    "Auto Services",
    "Beauty & Wellness",
    "Tech Support",
    "Moving Services",
    "Childcare",
    "Elder Care",
    "Food Services",
    "Handyman",
    "Plumbing",
    "Electrical",
    "HVAC",
    "Painting",
    "Other",
]

SUBCATEGORIES: Dict[str, List[str]] = {
    "Home Maintenance": ["General Repairs", "Appliance Repair", "Furniture Assembly", "Door/Window Repair", "Drywall Repair"],
    "Cleaning Services": ["House Cleaning", "Office Cleaning", "Carpet Cleaning", "Window Cleaning", "Deep Cleaning"],
    "Landscaping": ["Lawn Mowing", "Garden Design", "Tree Trimming", "Snow Removal", "Irrigation"],
    "Pet Care": ["Dog Walking", "Pet Sitting", "Grooming", "Training", "Veterinary"],
    "Personal Training": ["Fitness Training", "Yoga Instruction", "Nutrition Coaching", "Sports Coaching", "Dance Instruction"],
    "Tutoring": ["Math Tutoring", "Language Tutoring", "Test Prep", "Music Lessons", "Art Lessons"],
    "Photography": [
        "Portrait Photography",
        "Event Photography",
        "Product Photography",
        "Real Estate Photography",
        "Video Services",
    ],
    "Event Planning": ["Wedding Planning", "Party Planning", "Corporate Events", "Catering", "Entertainment"],
    "Auto Services": ["Car Repair", "Oil Changes", "Car Wash", "Tire Services", "Mobile Mechanic"],
    "Beauty & Wellness": ["Hair Styling", "Massage Therapy", "Nail Services", "Skin Care", "Makeup Services"],
}

STATUSES = ("draft", "pending", "active", "paused", "rejected", "archived")

# Status changes an owner may request directly.  ``pending`` -> ``active``
# or ``rejected`` only happens through moderation.
OWNER_TRANSITIONS: Dict[str, tuple] = {
    "draft": ("pending", "archived"),
    "pending": ("draft", "archived"),
    "active": ("paused", "archived"),
    "paused": ("active", "archived"),
    "rejected": ("pending", "draft", "archived"),
    "archived": (),
}

_RATING_SUBQUERY = (
    "(SELECT AVG(r.rating) FROM reviews r WHERE r.listing_id = l.id AND r.approved = 1 AND r.is_public = 1) AS average_rating, "
    "(SELECT COUNT(*) FROM reviews r WHERE r.listing_id = l.id AND r.approved = 1 AND r.is_public = 1) AS review_count"
)
_SELECT = f"SELECT l.*, u.full_name AS provider_name, {_RATING_SUBQUERY} FROM listings l JOIN users u ON u.id = l.provider_id"
_EFFECTIVE_PRICE = "COALESCE(CASE l.pricing_type WHEN 'hourly' THEN l.hourly_rate ELSE l.base_price END, 0)"

SORT_CLAUSES = {
    "relevance": "l.is_featured DESC, review_count DESC, l.booking_count DESC, l.created_at DESC",
    "price_low": f"{_EFFECTIVE_PRICE} ASC, l.id ASC",
    "price_high": f"{_EFFECTIVE_PRICE} DESC, l.id ASC",
    "newest": "COALESCE(l.published_at, l.created_at) DESC, l.id DESC",
    "popular": "l.booking_count DESC, l.view_count DESC, l.id ASC",
    "rating": "average_rating IS NULL, average_rating DESC, review_count DESC, l.id ASC",
}


def validate_listing(data: Dict[str, Any]) -> List[str]:
    """Return the list of rule violations for a (merged) listing payload."""
    errors: List[str] = []
    if len((data.get("title") or "").strip()) < 5:
        errors.append("Title must be at least 5 characters long")
    if len((data.get("description") or "").strip()) < 20:
        errors.append("Description must be at least 20 characters long")
    category = data.get("category")
    if category not in LISTING_CATEGORIES:
        errors.append("Category must be one of the listing categories")
    elif data.get("subcategory") and category in SUBCATEGORIES and data["subcategory"] not in SUBCATEGORIES[category]:
        errors.append(f"Unknown subcategory for {category}")
    for field in ("base_price", "hourly_rate"):
        if data.get(field) is not None and data[field] < 0:
            errors.append(f"{field} must be a positive number")
    if data.get("pricing_type") == "hourly" and data.get("hourly_rate") is None:
        errors.append("Hourly listings require an hourly rate")
    if data.get("pricing_type") == "fixed" and data.get("base_price") is None:
        errors.append("Fixed price listings require a base price")
    if data.get("location_type") in ("on_site", "both") and not data.get("service_areas"):
        errors.append("At least one service area is required")
    return errors


def _ensure_valid(data: Dict[str, Any]) -> None:
    errors = validate_listing(data)
    if errors:
        raise ValueError("; ".join(errors))


def _row_to_listing(row: sqlite3.Row) -> ListingRead:
    keys = row.keys()
    average = row["average_rating"] if "average_rating" in keys else None
    return ListingRead(
        id=row["id"],
        provider_id=row["provider_id"],
        workspace_id=row["workspace_id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        subcategory=row["subcategory"],
        tags=json.loads(row["tags"]) if row["tags"] else [],
        pricing_type=row["pricing_type"],
        base_price=row["base_price"],
        hourly_rate=row["hourly_rate"],
        minimum_hours=row["minimum_hours"],
        duration_minutes=row["duration_minutes"],
        location_type=row["location_type"],
        service_areas=json.loads(row["service_areas"]) if row["service_areas"] else [],
        max_bookings_per_day=row["max_bookings_per_day"],
        advance_booking_days=row["advance_booking_days"],
        cancellation_policy=row["cancellation_policy"],
        status=row["status"],
        rejection_reason=row["rejection_reason"],
        is_featured=bool(row["is_featured"]),
        view_count=row["view_count"],
        booking_count=row["booking_count"],
        published_at=row["published_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        provider_name=row["provider_name"] if "provider_name" in keys else None,
        average_rating=round(average, 2) if average is not None else None,
        review_count=row["review_count"] if "review_count" in keys else 0,
    )


def _is_owner_or_admin(row: sqlite3.Row, current_user: Optional[Dict[str, Any]]) -> bool:
    if not current_user:
        return False
    return current_user.get("role") == "admin" or row["provider_id"] == current_user.get("user_id")


class ListingService:
    """Service for creating, publishing and searching listings."""

    @classmethod
    def fetch_row(cls, listing_id: int, conn: sqlite3.Connection) -> sqlite3.Row:
        row = conn.execute(f"{_SELECT} WHERE l.id = ?", (listing_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Listing {listing_id} not found")
        return row

    @classmethod
    async def create_listing(cls, data: ListingCreate, current_user: Dict[str, Any]) -> ListingRead:
        """Create a draft listing for the calling provider.

        Enforces the provider's plan listing limit and, for workspace
        listings, workspace membership.
        """
        payload = data.model_dump()
        _ensure_valid(payload)
        provider_id = current_user["user_id"]
        conn = get_connection()
        try:
            if data.workspace_id is not None:
                workspace = conn.execute("SELECT id FROM workspaces WHERE id = ?", (data.workspace_id,)).fetchone()
                if not workspace:
                    raise NotFoundError("Workspace not found")
                if WorkspaceService.member_role(data.workspace_id, provider_id, conn) is None:
                    raise PermissionDeniedError("You are not a member of this workspace")
            SubscriptionService.check_listing_limit(provider_id, conn)
            cursor = conn.execute(
                """
                INSERT INTO listings (provider_id, workspace_id, title, description, category, subcategory, tags,
                    pricing_type, base_price, hourly_rate, minimum_hours, duration_minutes, location_type,
                    service_areas, max_bookings_per_day, advance_booking_days, cancellation_policy, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'draft')
                """,
                (
                    provider_id,
                    data.workspace_id,
                    data.title.strip(),
                    data.description.strip(),
                    data.category,
                    data.subcategory,
                    json.dumps(data.tags),
                    data.pricing_type,
                    data.base_price,
                    data.hourly_rate,
                    data.minimum_hours,
                    data.duration_minutes,
                    data.location_type,
                    json.dumps(data.service_areas),
                    data.max_bookings_per_day,
                    data.advance_booking_days,
                    data.cancellation_policy,
                ),
            )
            listing_id = cursor.lastrowid
            conn.commit()
            row = cls.fetch_row(listing_id, conn)
        finally:
            conn.close()
        logger.info("Listing %s created by provider %s", listing_id, provider_id)
        await AuditService.log(provider_id, "create", "listing", listing_id, {"title": data.title})
        return _row_to_listing(row)

    @classmethod
    async def get_listing(
        cls, listing_id: int, current_user: Optional[Dict[str, Any]] = None, count_view: bool = True
    ) -> ListingRead:
        """Return a listing.

        Non-active listings are only visible to their owner and admins.
        Views by anyone but the owner increment ``view_count``.
        """
        conn = get_connection()
        try:
            row = cls.fetch_row(listing_id, conn)
            if row["status"] != "active" and not _is_owner_or_admin(row, current_user):
                raise NotFoundError(f"Listing {listing_id} not found")
            is_owner = current_user is not None and row["provider_id"] == current_user.get("user_id")
            if count_view and not is_owner and row["status"] == "active":
                conn.execute("UPDATE listings SET view_count = view_count + 1 WHERE id = ?", (listing_id,))
                conn.commit()
                row = cls.fetch_row(listing_id, conn)
        finally:
            conn.close()
        return _row_to_listing(row)

    @classmethod
    async def update_listing(cls, listing_id: int, data: ListingUpdate, current_user: Dict[str, Any]) -> ListingRead:
        """Apply a partial update after validating the merged listing."""
        updates = data.model_dump(exclude_unset=True)
        conn = get_connection()
        try:
            row = cls.fetch_row(listing_id, conn)
            if not _is_owner_or_admin(row, current_user):
                raise PermissionDeniedError("You can only edit your own listings")
            if row["status"] == "archived":
                raise ValueError("Archived listings cannot be edited")
            merged = dict(_row_to_listing(row).model_dump())
            merged.update(updates)
            _ensure_valid(merged)
            if updates:
                columns = []
                values: List[Any] = []
                for key, value in updates.items():
                    if key in ("tags", "service_areas"):
                        value = json.dumps(value or [])
                    columns.append(f"{key} = ?")
                    values.append(value)
                conn.execute(
                    f"UPDATE listings SET {', '.join(columns)}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (*values, listing_id),
                )
                conn.commit()
            row = cls.fetch_row(listing_id, conn)
        finally:
            conn.close()
        await AuditService.log(current_user.get("user_id"), "update", "listing", listing_id, updates)
        return _row_to_listing(row)

    @classmethod
    async def change_status(cls, listing_id: int, new_status: str, current_user: Dict[str, Any]) -> ListingRead:
        """Owner-driven status change (submit, pause, resume, archive).

        Submitting (``pending``) publishes straight to ``active`` when
        ``listing_auto_approve`` is on.
        """
        auto_approve = bool(await SettingsService.get_value("listing_auto_approve"))
        conn = get_connection()
        try:
            row = cls.fetch_row(listing_id, conn)
            if not _is_owner_or_admin(row, current_user):
                raise PermissionDeniedError("You can only manage your own listings")
            current = row["status"]
            if new_status not in OWNER_TRANSITIONS.get(current, ()):
                raise ValueError(f"Cannot change listing status from {current} to {new_status}")
            target = "active" if new_status == "pending" and auto_approve else new_status
            published = ", published_at = COALESCE(published_at, CURRENT_TIMESTAMP)" if target == "active" else ""
            conn.execute(
                f"UPDATE listings SET status = ?, rejection_reason = NULL{published}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (target, listing_id),
            )
            conn.commit()
            row = cls.fetch_row(listing_id, conn)
        finally:
            conn.close()
        logger.info("Listing %s status %s -> %s", listing_id, current, target)
        await AuditService.log(
            current_user.get("user_id"), "status_change", "listing", listing_id, {"from": current, "to": target}
        )
        return _row_to_listing(row)

    @classmethod
    async def moderate(
        cls, listing_id: int, approved: bool, reason: Optional[str], moderator_id: Optional[int]
    ) -> ListingRead:
        """Approve or reject a pending listing."""
        conn = get_connection()
        try:
            row = cls.fetch_row(listing_id, conn)
            if row["status"] != "pending":
                raise ValueError("Only pending listings can be moderated")
            if approved:
                conn.execute(
                    """
                    UPDATE listings SET status = 'active', rejection_reason = NULL,
                        published_at = COALESCE(published_at, CURRENT_TIMESTAMP), updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (listing_id,),
                )
            else:
                if not reason:
                    raise ValueError("A reason is required to reject a listing")
                conn.execute(
                    "UPDATE listings SET status = 'rejected', rejection_reason = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (reason, listing_id),
                )
            conn.commit()
            row = cls.fetch_row(listing_id, conn)
        finally:
            conn.close()
        logger.info("Listing %s %s by %s", listing_id, "approved" if approved else "rejected", moderator_id)
        await AuditService.log(
            moderator_id, "moderate", "listing", listing_id, {"approved": approved, "reason": reason}
        )
        return _row_to_listing(row)

    @classmethod
    async def set_featured(cls, listing_id: int, featured: bool, admin_id: Optional[int]) -> ListingRead:
        conn = get_connection()
        try:
            cls.fetch_row(listing_id, conn)
            conn.execute(
                "UPDATE listings SET is_featured = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (1 if featured else 0, listing_id),
            )
            conn.commit()
            row = cls.fetch_row(listing_id, conn)
        finally:
            conn.close()
        await AuditService.log(admin_id, "feature", "listing", listing_id, {"is_featured": featured})
        return _row_to_listing(row)

    @classmethod
    async def search(
        cls,
        query: Optional[str] = None,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
        location: Optional[str] = None,
        location_type: Optional[str] = None,
        pricing_type: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        workspace_id: Optional[int] = None,
        provider_id: Optional[int] = None,
        sort_by: str = "relevance",
        page: int = 1,
        limit: int = 20,
    ) -> ListingSearchResult:
        """Search active listings with filters, sorting and pagination."""
        if sort_by not in SORT_CLAUSES:
            raise ValueError(f"Invalid sort option '{sort_by}'")
        page = max(page, 1)
        limit = max(1, min(limit, 50))
        clauses = ["l.status = 'active'"]
        params: List[Any] = []
        order = SORT_CLAUSES[sort_by]
        order_params: List[Any] = []
        if query:
            like = like_pattern(query)
            clauses.append(
                "(l.title LIKE ? ESCAPE '\\' OR l.description LIKE ? ESCAPE '\\' OR l.tags LIKE ? ESCAPE '\\')"
            )
            params.extend([like, like, like])
            if sort_by == "relevance":
                # Title hits rank above description or tag hits.
                order = f"(l.title LIKE ? ESCAPE '\\') DESC, {order}"
                order_params.append(like)
        if category:
            clauses.append("l.category = ?")
            params.append(category)
        if subcategory:
            clauses.append("l.subcategory = ?")
            params.append(subcategory)
        if location:
            clauses.append("l.service_areas LIKE ? ESCAPE '\\'")
            params.append(like_pattern(location))
        if location_type:
            clauses.append("(l.location_type = ? OR l.location_type = 'both')")
            params.append(location_type)
        if pricing_type:
            clauses.append("l.pricing_type = ?")
            params.append(pricing_type)
        if min_price is not None:
            clauses.append(f"{_EFFECTIVE_PRICE} >= ?")
            params.append(min_price)
        if max_price is not None:
            clauses.append(f"{_EFFECTIVE_PRICE} <= ?")
            params.append(max_price)
        if workspace_id is not None:
            clauses.append("l.workspace_id = ?")
            params.append(workspace_id)
        if provider_id is not None:
            clauses.append("l.provider_id = ?")
            params.append(provider_id)
        where = " WHERE " + " AND ".join(clauses)

        conn = get_connection()
        try:
            total = conn.execute(f"SELECT COUNT(*) AS count FROM listings l{where}", tuple(params)).fetchone()["count"]
            rows = conn.execute(
                f"{_SELECT}{where} ORDER BY {order} LIMIT ? OFFSET ?",
                (*params, *order_params, limit, (page - 1) * limit),
            ).fetchall()
        finally:
            conn.close()
        return ListingSearchResult(
            listings=[_row_to_listing(row) for row in rows],
            total=total,
            page=page,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    @classmethod
    async def list_provider_listings(cls, provider_id: int, status: Optional[str] = None) -> List[ListingRead]:
        query = f"{_SELECT} WHERE l.provider_id = ?"
        params: List[Any] = [provider_id]
        if status:
            if status not in STATUSES:
                raise ValueError(f"Invalid listing status '{status}'")
            query += " AND l.status = ?"
            params.append(status)
        query += " ORDER BY l.created_at DESC, l.id DESC"
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        return [_row_to_listing(row) for row in rows]

    @classmethod
    async def list_pending(cls, limit: int = 50, offset: int = 0) -> List[ListingRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                f"{_SELECT} WHERE l.status = 'pending' ORDER BY l.updated_at ASC, l.id ASC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_listing(row) for row in rows]

    @staticmethod
    def categories() -> List[CategoryRead]:
        return [CategoryRead(name=name, subcategories=SUBCATEGORIES.get(name, [])) for name in LISTING_CATEGORIES]

    @classmethod
    async def stats(cls, provider_id: int) -> ListingStats:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT status, COUNT(*) AS count, COALESCE(SUM(view_count), 0) AS views,
                       COALESCE(SUM(booking_count), 0) AS bookings
                FROM listings WHERE provider_id = ? GROUP BY status
                """,
                (provider_id,),
            ).fetchall()
        finally:
            conn.close()
        by_status = {status: 0 for status in STATUSES}
        views = bookings = 0
        for row in rows:
            by_status[row["status"]] = row["count"]
            views += row["views"]
            bookings += row["bookings"]
        return ListingStats(
            total=sum(by_status.values()), by_status=by_status, total_views=views, total_bookings=bookings
        )
