"""
Shared infrastructure: settings, logging, database, security, RBAC,
rate limiting and localisation helpers.
"""
