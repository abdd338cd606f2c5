"""
Cookie consent and GDPR data subject requests.

Consent decisions are append-only: every answer to the banner is a new
``consent_records`` row and the latest one wins.  The banner is shown
again when the stored decision is missing, was given for an older
consent version or is more than a year old.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.config import settings
from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import NotFoundError, PermissionDeniedError
from loconomy_api.app.schemas.consent import (
    ConsentCategory,
    ConsentCreate,
    ConsentRead,
    ConsentState,
    DataDeletionResult,
    DataExport,
    PrivacySettings,
    PrivacySettingsUpdate,
)
from loconomy_api.app.services.audit_service import AuditService
from loconomy_api.app.services.user_service import PRIMARY_ADMIN_ID


logger = logging.getLogger(__name__)

CONSENT_MAX_AGE = timedelta(days=365)

COOKIE_CATEGORIES = [
    ConsentCategory(
        id="necessary",
        name="Necessary",
        description="Essential cookies required for basic website functionality",
        required=True,
    ),
    ConsentCategory(
        id="analytics",
        name="Analytics",
        description="Help us understand how you use our website to improve performance",
        required=False,
    ),
    ConsentCategory(
        id="marketing",
        name="Marketing",
        description="Used to deliver personalized advertisements and marketing content",
        required=False,
    ),
    ConsentCategory(
        id="preferences",
        name="Preferences",
        description="Remember your preferences and settings for a better experience",
        required=False,
    ),
]

OPTIONAL_CATEGORIES = ("analytics", "marketing", "preferences")
PRIVACY_FIELDS = tuple(PrivacySettings.model_fields)


def resolve_categories(data: ConsentCreate) -> Dict[str, bool]:
    """Effective category flags for a banner answer.

    ``rejected`` turns every optional category off; ``accepted``
    defaults them to on; ``customized`` defaults them to off.
    """
    flags = {"necessary": True}
    for name in OPTIONAL_CATEGORIES:
        chosen = getattr(data, name)
        if data.status == "rejected":
            flags[name] = False
        elif chosen is None:
            flags[name] = data.status == "accepted"
        else:
            flags[name] = chosen
    return flags


def should_show_banner(consent: Optional[ConsentRead], version: str, now: Optional[datetime] = None) -> bool:
    if consent is None:
        return True
    if consent.version != version:
        return True
    if consent.created_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    created = consent.created_at
    if created.tzinfo is None:
        # SQLite CURRENT_TIMESTAMP is UTC
        created = created.replace(tzinfo=timezone.utc)
    return now - created > CONSENT_MAX_AGE


def _row_to_consent(row: sqlite3.Row) -> ConsentRead:
    return ConsentRead(
        id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        status=row["status"],
        necessary=bool(row["necessary"]),
        analytics=bool(row["analytics"]),
        marketing=bool(row["marketing"]),
        preferences=bool(row["preferences"]),
        version=row["version"],
        created_at=row["created_at"],
    )


def _rows(conn: sqlite3.Connection, query: str, params: tuple) -> List[Dict[str, Any]]:
    return [dict(row) for row in conn.execute(query, params).fetchall()]


class ConsentService:

    @staticmethod
    def categories() -> List[ConsentCategory]:
        return COOKIE_CATEGORIES

    @classmethod
    async def record_consent(
        cls,
        data: ConsentCreate,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ConsentRead:
        if user_id is None and not data.session_id:
            raise ValueError("session_id is required for anonymous consent")
        flags = resolve_categories(data)
        conn = get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO consent_records (user_id, session_id, status, necessary, analytics, marketing,
                    preferences, version, ip_address, user_agent)
                VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    data.session_id,
                    data.status,
                    int(flags["analytics"]),
                    int(flags["marketing"]),
                    int(flags["preferences"]),
                    settings.consent_version,
                    ip_address,
                    user_agent,
                ),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM consent_records WHERE id = ?", (cursor.lastrowid,)).fetchone()
        finally:
            conn.close()
        logger.info("Consent %s recorded for %s", data.status, f"user {user_id}" if user_id else "anonymous session")
        return _row_to_consent(row)

    @classmethod
    async def get_consent(cls, user_id: Optional[int] = None, session_id: Optional[str] = None) -> ConsentState:
        row = None
        if user_id is not None or session_id:
            if user_id is not None:
                query, params = "SELECT * FROM consent_records WHERE user_id = ?", (user_id,)
            else:
                query, params = "SELECT * FROM consent_records WHERE session_id = ?", (session_id,)
            conn = get_connection()
            try:
                row = conn.execute(f"{query} ORDER BY created_at DESC, id DESC LIMIT 1", params).fetchone()
            finally:
                conn.close()
        consent = _row_to_consent(row) if row else None
        return ConsentState(
            consent=consent,
            show_banner=should_show_banner(consent, settings.consent_version),
            current_version=settings.consent_version,
        )

    @classmethod
    async def get_privacy_settings(cls, user_id: int) -> PrivacySettings:
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM privacy_settings WHERE user_id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            return PrivacySettings()
        values = {name: row[name] for name in PRIVACY_FIELDS}
        return PrivacySettings(**{k: (bool(v) if k != "profile_visibility" else v) for k, v in values.items()})

    @classmethod
    async def update_privacy_settings(cls, user_id: int, data: PrivacySettingsUpdate) -> PrivacySettings:
        merged = (await cls.get_privacy_settings(user_id)).model_dump()
        changes = data.model_dump(exclude_none=True)
        merged.update(changes)
        columns = ", ".join(PRIVACY_FIELDS)
        placeholders = ", ".join("?" for _ in PRIVACY_FIELDS)
        values = [merged[name] if name == "profile_visibility" else int(merged[name]) for name in PRIVACY_FIELDS]
        conn = get_connection()
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO privacy_settings (user_id, {columns}, updated_at) "
                f"VALUES (?, {placeholders}, CURRENT_TIMESTAMP)",
                (user_id, *values),
            )
            conn.commit()
        finally:
            conn.close()
        await AuditService.log(user_id, "update", "privacy_settings", user_id, changes)
        return PrivacySettings(**merged)

    @classmethod
    def _record_request(
        cls, conn: sqlite3.Connection, user_id: int, request_type: str, categories: List[str], reason: Optional[str]
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO data_requests (user_id, request_type, categories, reason, status, completed_at)
            VALUES (?, ?, ?, ?, 'completed', CURRENT_TIMESTAMP)
            """,
            (user_id, request_type, json.dumps(categories), reason),
        )
        return cursor.lastrowid

    @classmethod
    async def export_data(cls, user_id: int, categories: List[str]) -> DataExport:
        """Collect the user's data for the requested categories."""
        wanted = set(categories)
        everything = "all" in wanted
        data: Dict[str, Any] = {}
        conn = get_connection()
        try:
            if everything or "profile" in wanted:
                profile = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
                if not profile:
                    raise NotFoundError("User not found")
                data["profile"] = {key: profile[key] for key in profile.keys() if key != "password"}
            if everything or "bookings" in wanted:
                data["bookings"] = _rows(
                    conn, "SELECT * FROM bookings WHERE customer_id = ? OR provider_id = ? ORDER BY id", (user_id, user_id)
                )
                data["reviews"] = _rows(conn, "SELECT * FROM reviews WHERE reviewer_id = ? ORDER BY id", (user_id,))
            if everything or "preferences" in wanted:
                data["preferences"] = (await cls.get_privacy_settings(user_id)).model_dump()
                data["cookie_consents"] = _rows(
                    conn,
                    "SELECT id, status, analytics, marketing, preferences, version, created_at "
                    "FROM consent_records WHERE user_id = ? ORDER BY id",
                    (user_id,),
                )
            if everything or "communications" in wanted:
                data["messages"] = _rows(conn, "SELECT * FROM booking_messages WHERE sender_id = ? ORDER BY id", (user_id,))
                data["notifications"] = _rows(conn, "SELECT * FROM notifications WHERE user_id = ? ORDER BY id", (user_id,))
            if everything or "billing" in wanted:
                data["subscriptions"] = _rows(conn, "SELECT * FROM user_subscriptions WHERE user_id = ? ORDER BY id", (user_id,))
                data["invoices"] = _rows(conn, "SELECT * FROM invoices WHERE user_id = ? ORDER BY id", (user_id,))
                data["payment_methods"] = _rows(
                    conn,
                    "SELECT id, type, card_brand, card_last4, card_exp_month, card_exp_year, is_default, created_at "
                    "FROM payment_methods WHERE user_id = ? ORDER BY id",
                    (user_id,),
                )
            request_id = cls._record_request(conn, user_id, "export", sorted(wanted), None)
            conn.commit()
        finally:
            conn.close()
        logger.info("Data export %s completed for user %s", request_id, user_id)
        await AuditService.log(user_id, "export", "user", user_id, {"categories": sorted(wanted)})
        return DataExport(
            request_id=request_id,
            user_id=user_id,
            exported_at=datetime.now(timezone.utc),
            categories=sorted(wanted),
            data=data,
        )

    @classmethod
    async def delete_account_data(cls, user_id: int, reason: Optional[str] = None) -> DataDeletionResult:
        """Anonymise the account instead of deleting it.

        Bookings and reviews stay for the other party's records but no
        longer point at identifiable personal data.
        """
        if user_id == PRIMARY_ADMIN_ID:
            raise PermissionDeniedError("The primary administrator account cannot be deleted")
        conn = get_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE users SET email = ?, full_name = NULL, password = NULL, phone = NULL, city = NULL,
                    bio = NULL, social_id = NULL, disabled = 1, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (f"deleted-{user_id}@loconomy.invalid", user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")
            conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM privacy_settings WHERE user_id = ?", (user_id,))
            conn.execute(
                "UPDATE consent_records SET user_id = NULL, ip_address = NULL, user_agent = NULL WHERE user_id = ?",
                (user_id,),
            )
            conn.execute("UPDATE payment_methods SET is_active = 0, is_default = 0 WHERE user_id = ?", (user_id,))
            request_id = cls._record_request(conn, user_id, "deletion", ["all"], reason)
            conn.commit()
        finally:
            conn.close()
        logger.warning("Account %s anonymised on request", user_id)
        await AuditService.log(user_id, "delete", "user", user_id, {"anonymised": True, "reason": reason})
        return DataDeletionResult(request_id=request_id, user_id=user_id, status="completed")
