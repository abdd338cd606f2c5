"""
In-app notifications.

Other services call :meth:`NotificationService.notify` when something
happens that a user should know about (a booking request, a status
change, a new review, a billing event).  Users read and acknowledge
their own notifications through the API.
"""

import logging
import sqlite3
from typing import List, Optional

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import NotFoundError
from loconomy_api.app.schemas.notification import NotificationRead


logger = logging.getLogger(__name__)


def _row_to_notification(row: sqlite3.Row) -> NotificationRead:
    return NotificationRead(
        id=row["id"],
        user_id=row["user_id"],
        booking_id=row["booking_id"],
        type=row["type"],
        title=row["title"],
        message=row["message"],
        is_read=bool(row["is_read"]),
        created_at=row["created_at"],
    )


class NotificationService:

    @classmethod
    async def notify(
        cls,
        user_id: int,
        type_: str,
        title: str,
        message: str,
        booking_id: Optional[int] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> int:
        """Create a notification.

        When ``conn`` is given the insert joins the caller's transaction
        and the caller is responsible for committing.
        """
        own_conn = conn is None
        if own_conn:
            conn = get_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO notifications (user_id, booking_id, type, title, message) VALUES (?, ?, ?, ?, ?)",
                (user_id, booking_id, type_, title, message),
            )
            if own_conn:
                conn.commit()
            logger.debug("Notification %s for user %s", type_, user_id)
            return cursor.lastrowid
        finally:
            if own_conn:
                conn.close()

    @classmethod
    async def list_notifications(
        cls, user_id: int, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> List[NotificationRead]:
        query = "SELECT * FROM notifications WHERE user_id = ?"
        params: list = [user_id]
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        return [_row_to_notification(row) for row in rows]

    @classmethod
    async def unread_count(cls, user_id: int) -> int:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM notifications WHERE user_id = ? AND is_read = 0", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        return row["count"]

    @classmethod
    async def mark_read(cls, notification_id: int, user_id: int) -> NotificationRead:
        """Mark one of the user's notifications as read.

        Notifications of other users are reported as missing.
        """
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise NotFoundError("Notification not found")
            row = conn.execute("SELECT * FROM notifications WHERE id = ?", (notification_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_notification(row)

    @classmethod
    async def mark_all_read(cls, user_id: int) -> int:
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0", (user_id,)
            )
            conn.commit()
        finally:
            conn.close()
        return cursor.rowcount
