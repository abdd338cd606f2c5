"""
Pydantic schema definitions for API payloads.

Schemas are kept apart from the SQLite rows so that the wire format can
evolve independently of the storage layout.
"""
