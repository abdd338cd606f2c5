"""
Audit service for recording and querying system actions.

Every significant change (create, update, delete, status changes,
moderation) is written to the ``audit_logs`` table.  Only
administrators may read the trail.  A failed audit write is logged and
never aborts the business operation that triggered it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection


logger = logging.getLogger(__name__)


class AuditService:
    """Service class for writing and retrieving audit logs."""

    @classmethod
    async def log(
        cls,
        user_id: Optional[int],
        action: str,
        object_type: str,
        object_id: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Insert a new audit record.

        Parameters
        ----------
        user_id : Optional[int]
            ID of the acting user; ``None`` for system and webhook actions.
        action : str
            Short verb such as ``create``, ``update``, ``delete`` or
            ``status_change``.
        object_type : str
            Kind of object affected (``listing``, ``booking`` …).
        object_id : Optional[int]
            Primary key of the affected object, if applicable.
        details : Optional[dict]
            Extra structured data, stored as JSON.
        """
        details_json = json.dumps(details, default=str) if details else None
        try:
            conn = get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO audit_logs (user_id, action, object_type, object_id, details)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user_id, action, object_type, object_id, details_json),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error:
            logger.exception("Failed to write audit record %s %s:%s", action, object_type, object_id)

    @classmethod
    async def list_logs(
        cls,
        user_id: Optional[int] = None,
        object_type: Optional[str] = None,
        action: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Retrieve audit records, newest first.

        Date filters accept ISO strings and apply to ``timestamp``.
        """
        where_clauses: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            where_clauses.append("user_id = ?")
            params.append(user_id)
        if object_type:
            where_clauses.append("object_type = ?")
            params.append(object_type)
        if action:
            where_clauses.append("action = ?")
            params.append(action)
        if start_date:
            where_clauses.append("timestamp >= ?")
            params.append(start_date)
        if end_date:
            where_clauses.append("timestamp <= ?")
            params.append(end_date)
        query = "SELECT id, user_id, action, object_type, object_id, timestamp, details FROM audit_logs"
        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        logs = []
        for row in rows:
            details_data = None
            if row["details"]:
                try:
                    details_data = json.loads(row["details"])
                except json.JSONDecodeError:
                    details_data = row["details"]
            logs.append(
                {
                    "id": row["id"],
                    "user_id": row["user_id"],
                    "action": row["action"],
                    "object_type": row["object_type"],
                    "object_id": row["object_id"],
                    "timestamp": row["timestamp"],
                    "details": details_data,
                }
            )
        return logs
