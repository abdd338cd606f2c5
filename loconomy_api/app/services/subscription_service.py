"""
Subscription plans, usage and limit enforcement.

Every provider is on exactly one plan.  Users without an active
(``trialing`` or ``active``) Stripe subscription are on the free plan.
Plan limits use ``-1`` for "unlimited"; listing and booking creation
call :meth:`SubscriptionService.check_listing_limit` and
:meth:`SubscriptionService.check_booking_limit` before writing.

The module level helpers format prices and usage for display and are
shared with the billing endpoints.
"""

import json
import logging
import math
import sqlite3
from datetime import date
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import LimitExceededError, NotFoundError
from loconomy_api.app.schemas.billing import PlanRead, SubscriptionRead, UsageItem


logger = logging.getLogger(__name__)

FREE_PLAN = "free"
ACTIVE_STATUSES = ("trialing", "active")
UNLIMITED = -1


def format_plan_price(price: float, billing_cycle: str) -> str:
    if price == 0:
        return "Free"
    if billing_cycle == "yearly":
        return f"${price / 12:.0f}/mo (billed yearly)"
    return f"${price:.0f}/mo"


def get_plan_savings(monthly_price: float, yearly_price: float) -> int:
    """Percentage saved by paying yearly instead of monthly."""
    if monthly_price <= 0:
        return 0
    savings = (monthly_price - yearly_price / 12) / monthly_price * 100
    return int(math.floor(savings + 0.5))


def format_usage_percentage(current: int, limit: int) -> int:
    if limit == UNLIMITED:
        return 0
    if limit == 0:
        return 100
    return min(100, int(math.floor(current / limit * 100 + 0.5)))


def get_usage_status(current: int, limit: int) -> str:
    percentage = format_usage_percentage(current, limit)
    if percentage >= 90:
        return "danger"
    if percentage >= 75:
        return "warning"
    return "safe"


def get_upgrade_recommendation(current_plan: str, listings: int, bookings: int) -> Optional[str]:
    """Suggest the next plan when usage approaches the current plan's limits."""
    if current_plan == "free" and listings >= 2:
        return "starter"
    if current_plan == "starter" and (listings >= 20 or bookings >= 80):
        return "professional"
    if current_plan == "professional" and (listings >= 80 or bookings >= 400):
        return "enterprise"
    return None


def format_limit_display(limit: int, unit: str = "") -> str:
    if limit == UNLIMITED:
        return "Unlimited"
    return f"{limit:,}{unit}"


def is_subscription_active(status: Optional[str]) -> bool:
    return status in ACTIVE_STATUSES


def can_access_feature(features: Dict[str, Any], feature: str) -> bool:
    return features.get(feature) is True


def _month_start(today: Optional[date] = None) -> str:
    today = today or date.today()
    return today.replace(day=1).isoformat()


def _row_to_plan(row: sqlite3.Row) -> PlanRead:
    return PlanRead(
        plan_id=row["plan_id"],
        name=row["name"],
        description=row["description"],
        price_monthly=row["price_monthly"],
        price_yearly=row["price_yearly"],
        features=json.loads(row["features"]),
        limits=json.loads(row["limits"]),
        display_order=row["display_order"],
        is_featured=bool(row["is_featured"]),
        monthly_display=format_plan_price(row["price_monthly"], "monthly"),
        yearly_display=format_plan_price(row["price_yearly"], "yearly"),
        yearly_savings_percent=get_plan_savings(row["price_monthly"], row["price_yearly"]),
    )


class SubscriptionService:

    @classmethod
    async def list_plans(cls) -> List[PlanRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM subscription_plans WHERE is_active = 1 ORDER BY display_order"
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_plan(row) for row in rows]

    @classmethod
    async def get_plan(cls, plan_id: str) -> PlanRead:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM subscription_plans WHERE plan_id = ? AND is_active = 1", (plan_id,)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError(f"Plan '{plan_id}' not found")
        return _row_to_plan(row)

    @classmethod
    def current_subscription_row(cls, user_id: int, conn: sqlite3.Connection) -> Optional[sqlite3.Row]:
        """Latest subscription row of the user, whatever its status."""
        return conn.execute(
            "SELECT * FROM user_subscriptions WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (user_id,),
        ).fetchone()

    @classmethod
    def current_plan_id(cls, user_id: int, conn: sqlite3.Connection) -> str:
        row = conn.execute(
            """
            SELECT plan_id FROM user_subscriptions
            WHERE user_id = ? AND status IN ('trialing', 'active')
            ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            (user_id,),
        ).fetchone()
        return row["plan_id"] if row else FREE_PLAN

    @classmethod
    def plan_limits(cls, plan_id: str, conn: sqlite3.Connection) -> Dict[str, int]:
        row = conn.execute("SELECT limits FROM subscription_plans WHERE plan_id = ?", (plan_id,)).fetchone()
        if not row:
            row = conn.execute("SELECT limits FROM subscription_plans WHERE plan_id = ?", (FREE_PLAN,)).fetchone()
        return json.loads(row["limits"])

    @classmethod
    def usage(cls, user_id: int, conn: sqlite3.Connection, today: Optional[date] = None) -> Dict[str, int]:
        """Counters the plan limits apply to.

        Listings count every non-archived listing; bookings count those
        received as a provider since the first day of the current month.
        """
        listings = conn.execute(
            "SELECT COUNT(*) AS count FROM listings WHERE provider_id = ? AND status != 'archived'",
            (user_id,),
        ).fetchone()["count"]
        bookings = conn.execute(
            "SELECT COUNT(*) AS count FROM bookings WHERE provider_id = ? AND date(created_at) >= ?",
            (user_id, _month_start(today)),
        ).fetchone()["count"]
        return {"max_listings": listings, "max_bookings_per_month": bookings}

    @classmethod
    def check_listing_limit(cls, user_id: int, conn: sqlite3.Connection) -> None:
        plan_id = cls.current_plan_id(user_id, conn)
        limit = cls.plan_limits(plan_id, conn).get("max_listings", UNLIMITED)
        current = cls.usage(user_id, conn)["max_listings"]
        if limit != UNLIMITED and current >= limit:
            logger.warning("User %s reached listing limit of plan %s", user_id, plan_id)
            raise LimitExceededError(
                f"Your {plan_id} plan allows {limit} listings. Upgrade your plan to add more."
            )

    @classmethod
    def check_booking_limit(cls, provider_id: int, conn: sqlite3.Connection) -> None:
        plan_id = cls.current_plan_id(provider_id, conn)
        limit = cls.plan_limits(plan_id, conn).get("max_bookings_per_month", UNLIMITED)
        current = cls.usage(provider_id, conn)["max_bookings_per_month"]
        if limit != UNLIMITED and current >= limit:
            logger.warning("Provider %s reached monthly booking limit of plan %s", provider_id, plan_id)
            raise LimitExceededError("This provider cannot accept more bookings this month")

    @classmethod
    async def get_subscription(cls, user_id: int) -> SubscriptionRead:
        """Current plan with usage figures and an upgrade hint."""
        conn = get_connection()
        try:
            row = cls.current_subscription_row(user_id, conn)
            plan_id = cls.current_plan_id(user_id, conn)
            plan_row = conn.execute("SELECT * FROM subscription_plans WHERE plan_id = ?", (plan_id,)).fetchone()
            usage = cls.usage(user_id, conn)
        finally:
            conn.close()
        plan = _row_to_plan(plan_row)
        active_row = row if row is not None and is_subscription_active(row["status"]) else None
        usage_items = {
            key: UsageItem(
                current=current,
                limit=plan.limits.get(key, UNLIMITED),
                limit_display=format_limit_display(plan.limits.get(key, UNLIMITED)),
                percentage=format_usage_percentage(current, plan.limits.get(key, UNLIMITED)),
                status=get_usage_status(current, plan.limits.get(key, UNLIMITED)),
            )
            for key, current in usage.items()
        }
        return SubscriptionRead(
            plan_id=plan.plan_id,
            plan_name=plan.name,
            status=active_row["status"] if active_row else "active",
            billing_cycle=active_row["billing_cycle"] if active_row else "monthly",
            is_active=True,
            cancel_at_period_end=bool(active_row["cancel_at_period_end"]) if active_row else False,
            current_period_end=active_row["current_period_end"] if active_row else None,
            trial_end=active_row["trial_end"] if active_row else None,
            features=plan.features,
            limits=plan.limits,
            usage=usage_items,
            upgrade_recommendation=get_upgrade_recommendation(
                plan.plan_id, usage["max_listings"], usage["max_bookings_per_month"]
            ),
        )
