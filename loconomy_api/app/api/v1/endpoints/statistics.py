"""
Statistics endpoints for API v1.

Administrators see platform-wide figures.  Providers get a dashboard of
their own bookings and reviews, customers a summary of their booking
history.  Administrators may open either dashboard for any user.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from loconomy_api.app.core.security import get_current_user, require_roles
from loconomy_api.app.services.statistics_service import StatisticsService


router = APIRouter()


def _target_user(current_user: Dict[str, Any], user_id: Optional[int]) -> int:
    if user_id is not None and user_id != current_user.get("user_id"):
        if current_user.get("role") != "admin":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user_id
    if current_user.get("user_id") is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
    return current_user["user_id"]


@router.get("/overview")
async def platform_overview(current_user: Dict[str, Any] = Depends(require_roles("admin"))) -> Dict[str, Any]:
    """Users, listings, bookings, revenue and moderation backlog."""
    return await StatisticsService.overview()


@router.get("/provider")
async def provider_dashboard(
    provider_id: Optional[int] = Query(None, description="Administrators only"),
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> Dict[str, Any]:
    return await StatisticsService.provider_dashboard(_target_user(current_user, provider_id))


@router.get("/customer")
async def customer_history(
    customer_id: Optional[int] = Query(None, description="Administrators only"),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    return await StatisticsService.customer_history(_target_user(current_user, customer_id))
