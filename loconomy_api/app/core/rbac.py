"""
Role-based access control helpers.

Roles are stored in the ``roles`` table with fixed identifiers:
``admin`` (1), ``provider`` (2) and ``consumer`` (3).  ``guest`` is the
pseudo-role of unauthenticated callers and never appears in the
database.  The functions here are pure so they can be used both by the
security dependencies and by endpoints that describe what a user may
do (``/auth/me``, ``/auth/check-route``).
"""

from typing import Dict, Iterable, List, Optional


ROLE_ADMIN = 1
ROLE_PROVIDER = 2
ROLE_CONSUMER = 3

ROLE_NAMES: Dict[int, str] = {
    ROLE_ADMIN: "admin",
    ROLE_PROVIDER: "provider",
    ROLE_CONSUMER: "consumer",
}
ROLE_IDS: Dict[str, int] = {name: role_id for role_id, name in ROLE_NAMES.items()}

GUEST = "guest"
ALL_ROLES = (GUEST, "consumer", "provider", "admin")

PERMISSIONS: Dict[str, str] = {
    "read:listings": "Read listings",
    "write:listings": "Create and update listings",
    "delete:listings": "Delete listings",
    "moderate:listings": "Moderate listings",
    "read:bookings": "Read bookings",
    "write:bookings": "Create and update bookings",
    "delete:bookings": "Delete bookings",
    "read:users": "Read user profiles",
    "write:users": "Update user profiles",
    "delete:users": "Delete users",
    "admin:all": "Full administrative access",
    "admin:users": "Manage users",
    "admin:system": "System administration",
}

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    GUEST: ["read:listings"],
    "consumer": ["read:listings", "read:bookings", "write:bookings", "read:users", "write:users"],
    "provider": [
        "read:listings",
        "write:listings",
        "delete:listings",
        "read:bookings",
        "write:bookings",
        "read:users",
        "write:users",
    ],
    "admin": list(PERMISSIONS.keys()),
}

# Longest prefixes are not needed: the protected prefixes do not overlap.
ROUTE_PERMISSIONS: Dict[str, List[str]] = {
    "/dashboard": ["consumer", "provider", "admin"],
    "/provider": ["provider", "admin"],
    "/admin": ["admin"],
    "/bookings": ["consumer", "provider", "admin"],
    "/analytics": ["provider", "admin"],
}

ROLE_TRANSITIONS: Dict[str, List[str]] = {
    GUEST: ["consumer"],
    "consumer": ["provider"],
    "provider": ["consumer"],
    "admin": ["consumer", "provider"],
}

_NAVIGATION = [
    {"href": "/", "label": "Home", "roles": list(ALL_ROLES)},
    {"href": "/browse", "label": "Services", "roles": list(ALL_ROLES)},
    {"href": "/dashboard", "label": "Dashboard", "roles": ["consumer"]},
    {"href": "/bookings", "label": "My Bookings", "roles": ["consumer"]},
    {"href": "/provider/dashboard", "label": "Provider Dashboard", "roles": ["provider"]},
    {"href": "/provider/listings", "label": "My Listings", "roles": ["provider"]},
    {"href": "/provider/analytics", "label": "Analytics", "roles": ["provider"]},
    {"href": "/admin", "label": "Admin", "roles": ["admin"]},
    {"href": "/admin/users", "label": "User Management", "roles": ["admin"]},
    {"href": "/admin/moderation", "label": "Content Moderation", "roles": ["admin"]},
]


def role_name(role_id: Optional[int]) -> str:
    """Return the role name for a role id (``guest`` when unknown)."""
    return ROLE_NAMES.get(role_id, GUEST) if role_id is not None else GUEST


def get_permissions(role: str) -> List[str]:
    return list(ROLE_PERMISSIONS.get(role, []))


def has_permission(role: str, permission: str) -> bool:
    permissions = ROLE_PERMISSIONS.get(role, [])
    return permission in permissions or "admin:all" in permissions


def check_access(role: str, required: Iterable[str]) -> bool:
    """Return True when ``role`` holds every permission in ``required``."""
    return all(has_permission(role, permission) for permission in required)


def has_any_role(role: str, allowed: Iterable[str]) -> bool:
    return role in set(allowed)


def can_access_route(role: str, path: str) -> bool:
    """Decide whether ``role`` may open the front-end route ``path``.

    Routes outside the protected prefixes are public.
    """
    for prefix, allowed in ROUTE_PERMISSIONS.items():
        if path.startswith(prefix):
            return role in allowed
    return True


def can_transition_to_role(current: str, target: str) -> bool:
    return target in ROLE_TRANSITIONS.get(current, [])


def get_role_redirect_url(role: str) -> str:
    """Landing page after sign-in for each role."""
    if role == "admin":
        return "/admin"
    if role == "provider":
        return "/provider/dashboard"
    if role == "consumer":
        return "/dashboard"
    return "/"


def get_role_navigation(role: str) -> List[Dict[str, str]]:
    return [
        {"href": item["href"], "label": item["label"]}
        for item in _NAVIGATION
        if role in item["roles"]
    ]
