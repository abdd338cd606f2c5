"""
Top‑level router for version 1 of the API.

This router aggregates the domain routers (listings, bookings, billing,
etc.) under a unified prefix.  When a new domain is introduced, include
its router here.
"""

from fastapi import APIRouter

from .endpoints import (
    assistant,
    audit,
    auth,
    availability,
    billing,
    bookings,
    consent,
    health,
    listings,
    notifications,
    privacy,
    reviews,
    settings,
    statistics,
    users,
    workspaces,
)

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(workspaces.router, prefix="/workspaces", tags=["workspaces"])
router.include_router(listings.router, prefix="/listings", tags=["listings"])
router.include_router(availability.router, prefix="/availability", tags=["availability"])
router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
router.include_router(reviews.router, prefix="/reviews", tags=["reviews"])
router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
router.include_router(billing.router, prefix="/billing", tags=["billing"])
router.include_router(consent.router, prefix="/consent", tags=["consent"])
router.include_router(privacy.router, prefix="/privacy", tags=["privacy"])
router.include_router(statistics.router, prefix="/statistics", tags=["statistics"])
router.include_router(audit.router, prefix="/audit", tags=["audit"])
router.include_router(settings.router, prefix="/settings", tags=["settings"])
router.include_router(assistant.router, prefix="/assistant", tags=["assistant"])
# health defines its own "/health" path
router.include_router(health.router, tags=["health"])
