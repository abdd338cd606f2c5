"""
Pydantic models for in-app notifications.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


NotificationType = Literal[
    "booking_request",
    "booking_confirmed",
    "booking_cancelled",
    "booking_reminder",
    "booking_started",
    "booking_completed",
    "booking_disputed",
    "review_received",
    "payment_received",
    "subscription_updated",
]


class NotificationRead(BaseModel):
    id: int
    user_id: int
    booking_id: Optional[int] = None
    type: NotificationType
    title: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None


class UnreadCount(BaseModel):
    unread: int
