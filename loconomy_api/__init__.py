"""
Top‑level package for the Loconomy API.

Marks ``loconomy_api`` as a regular package so that modules under
``app`` can be imported with fully qualified names such as
``loconomy_api.app.main``.  All functionality lives in ``app``.
"""

__all__ = []
