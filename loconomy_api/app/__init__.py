"""
Application package for the Loconomy marketplace API.

Each marketplace domain (listings, bookings, reviews, billing, consent,
workspaces and so on) has a schema module in ``schemas``, a service
class in ``services`` and a router in ``api/v1/endpoints``.  Shared
infrastructure (configuration, database, security, RBAC and rate
limiting) lives in ``core``.
"""

from .main import app  # noqa: F401
