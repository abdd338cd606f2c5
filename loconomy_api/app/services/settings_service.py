"""
Service layer for runtime settings.

Settings are typed key/value pairs in the ``settings`` table that
administrators may change without restarting the API.  Marketplace
workflows read them through :meth:`SettingsService.get_value`, which
falls back to ``DEFAULTS`` for keys that were never stored.
"""

import logging
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import NotFoundError
from loconomy_api.app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

# Known keys and their values when unset.
DEFAULTS: Dict[str, Any] = {
    "booking_auto_confirm": False,
    "listing_auto_approve": False,
    "review_auto_approve": False,
}


class SettingsService:
    """Service for managing application settings."""

    @classmethod
    async def list_settings(cls) -> List[Dict[str, Any]]:
        conn = get_connection()
        try:
            rows = conn.execute("SELECT key, value, type FROM settings ORDER BY key").fetchall()
        finally:
            conn.close()
        return [
            {"key": row["key"], "value": cls._deserialize(row["value"], row["type"]), "type": row["type"]}
            for row in rows
        ]

    @classmethod
    async def get_setting(cls, key: str) -> Optional[Dict[str, Any]]:
        """Retrieve a single stored setting by key."""
        conn = get_connection()
        try:
            row = conn.execute("SELECT key, value, type FROM settings WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return {"key": row["key"], "value": cls._deserialize(row["value"], row["type"]), "type": row["type"]}

    @classmethod
    async def get_value(cls, key: str, default: Any = None) -> Any:
        setting = await cls.get_setting(key)
        if setting is not None:
            return setting["value"]
        return DEFAULTS.get(key, default)

    @classmethod
    async def upsert_setting(
        cls, key: str, value: Any, type_str: str, user_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """Insert or update a setting and return it deserialised."""
        serialized = cls._serialize(value, type_str)
        conn = get_connection()
        try:
            conn.execute(
                "INSERT INTO settings (key, value, type) VALUES (?, ?, ?)"
                " ON CONFLICT(key) DO UPDATE SET value = excluded.value, type = excluded.type",
                (key, serialized, type_str),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Setting %s updated", key)
        await AuditService.log(user_id, "update", "setting", None, {"key": key, "value": serialized})
        return {"key": key, "value": cls._deserialize(serialized, type_str), "type": type_str}

    @classmethod
    async def delete_setting(cls, key: str, user_id: Optional[int] = None) -> None:
        conn = get_connection()
        try:
            cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise NotFoundError("Setting not found")
        await AuditService.log(user_id, "delete", "setting", None, {"key": key})

    @staticmethod
    def _serialize(value: Any, type_str: str) -> str:
        """Serialize a Python value to its stored string form."""
        try:
            if type_str == "int":
                return str(int(value))
            if type_str == "float":
                return str(float(value))
        except (TypeError, ValueError):
            raise ValueError(f"Value {value!r} is not a valid {type_str}")
        if type_str == "bool":
            if isinstance(value, str):
                return "0" if value.strip().lower() in {"0", "false", "no", "off", ""} else "1"
            return "1" if bool(value) else "0"
        return str(value)

    @staticmethod
    def _deserialize(value: str, type_str: str) -> Any:
        if type_str == "int":
            return int(value)
        if type_str == "float":
            return float(value)
        if type_str == "bool":
            return value not in {"0", "false", "False", ""}
        return value
