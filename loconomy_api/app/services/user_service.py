"""
Business logic for user accounts.

Accounts are created either with email and password or through a
social login (``social_provider`` + ``social_id``).  The very first
account becomes the platform administrator; later registrations start
as consumers and may upgrade themselves to providers.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection, like_pattern
from loconomy_api.app.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from loconomy_api.app.core.i18n import normalize_locale
from loconomy_api.app.core.rbac import (
    ROLE_ADMIN,
    ROLE_CONSUMER,
    ROLE_IDS,
    can_transition_to_role,
    role_name,
)
from loconomy_api.app.core.security import hash_password, verify_password
from loconomy_api.app.schemas.user import SocialLoginRequest, UserCreate, UserRead
from loconomy_api.app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

PRIMARY_ADMIN_ID = 1

_USER_COLUMNS = (
    "id, email, full_name, role_id, locale, phone, city, bio, social_provider, disabled, created_at"
)
_UPDATABLE = {"full_name", "locale", "phone", "city", "bio", "password", "disabled"}


def _row_to_user(row: sqlite3.Row) -> UserRead:
    return UserRead(
        id=row["id"],
        email=row["email"],
        full_name=row["full_name"],
        role=role_name(row["role_id"]),
        locale=row["locale"] or "en",
        phone=row["phone"],
        city=row["city"],
        bio=row["bio"],
        social_provider=row["social_provider"],
        disabled=bool(row["disabled"]),
        created_at=row["created_at"],
    )


class UserService:
    """Service for user accounts and their roles."""

    @classmethod
    async def create_user(cls, data: UserCreate) -> UserRead:
        """Register a user with email and password.

        Raises ``ConflictError`` when the email is already taken.
        """
        logger.info("Registering user %s", data.email)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            row = cursor.execute("SELECT COUNT(*) AS count FROM users").fetchone()
            role_id = ROLE_ADMIN if row["count"] == 0 else ROLE_CONSUMER
            try:
                cursor.execute(
                    "INSERT INTO users (email, full_name, password, role_id, locale, social_provider) "
                    "VALUES (?, ?, ?, ?, ?, 'internal')",
                    (data.email, data.full_name, hash_password(data.password), role_id, data.locale),
                )
            except sqlite3.IntegrityError:
                conn.rollback()
                raise ConflictError("Email already registered")
            user_id = cursor.lastrowid
            conn.commit()
            created = cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        await AuditService.log(None, "create", "user", user_id, {"email": data.email, "role": role_name(role_id)})
        return _row_to_user(created)

    @classmethod
    async def authenticate(cls, email: str, password: str) -> Optional[UserRead]:
        """Return the user when the credentials match, otherwise ``None``.

        Disabled accounts never authenticate.
        """
        conn = get_connection()
        try:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS}, password FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        finally:
            conn.close()
        if not row or row["disabled"]:
            return None
        if not verify_password(password, row["password"]):
            logger.warning("Failed login attempt for %s", email)
            return None
        return _row_to_user(row)

    @classmethod
    async def social_login(cls, data: SocialLoginRequest) -> UserRead:
        """Find or create the account linked to a social identity.

        Only ``(social_provider, social_id)`` identifies the account.  An
        unknown identity whose email already belongs to another account
        raises ``ConflictError``; linking is never done by email alone.
        """
        provider = data.social_provider.strip().lower()
        email = (data.email or "").strip().lower() or f"{provider}-{data.social_id}@social.loconomy.invalid"
        conn = get_connection()
        try:
            cursor = conn.cursor()
            row = cursor.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE social_provider = ? AND social_id = ?",
                (provider, data.social_id),
            ).fetchone()
            if row is None:
                count = cursor.execute("SELECT COUNT(*) AS count FROM users").fetchone()["count"]
                role_id = ROLE_ADMIN if count == 0 else ROLE_CONSUMER
                try:
                    cursor.execute(
                        "INSERT INTO users (email, full_name, role_id, locale, social_provider, social_id) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (email, data.full_name, role_id, normalize_locale(data.locale), provider, data.social_id),
                    )
                except sqlite3.IntegrityError:
                    conn.rollback()
                    logger.warning("Rejected %s login for already registered email %s", provider, email)
                    raise ConflictError("Email already registered")
                user_id = cursor.lastrowid
                conn.commit()
                row = cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
                logger.info("Created user %s from %s login", user_id, provider)
                await AuditService.log(None, "create", "user", user_id, {"social_provider": provider})
        finally:
            conn.close()
        if row["disabled"]:
            raise PermissionDeniedError("User account disabled")
        return _row_to_user(row)

    @classmethod
    async def get_user(cls, user_id: int) -> UserRead:
        conn = get_connection()
        try:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError(f"User {user_id} not found")
        return _row_to_user(row)

    @classmethod
    async def get_user_by_email(cls, email: str) -> Optional[UserRead]:
        conn = get_connection()
        try:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_user(row) if row else None

    @classmethod
    async def list_users(
        cls,
        role: Optional[str] = None,
        disabled: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[UserRead]:
        """Return users ordered by id with optional filters."""
        clauses: List[str] = []
        params: List[Any] = []
        if role is not None:
            if role not in ROLE_IDS:
                raise ValueError(f"Unknown role '{role}'")
            clauses.append("role_id = ?")
            params.append(ROLE_IDS[role])
        if disabled is not None:
            clauses.append("disabled = ?")
            params.append(1 if disabled else 0)
        if search:
            clauses.append("(email LIKE ? ESCAPE '\\' OR full_name LIKE ? ESCAPE '\\')")
            params.extend([like_pattern(search)] * 2)
        query = f"SELECT {_USER_COLUMNS} FROM users"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        conn = get_connection()
        try:
            rows = conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()
        return [_row_to_user(row) for row in rows]

    @classmethod
    async def update_user(cls, user_id: int, updates: Dict[str, Any], actor_id: Optional[int] = None) -> UserRead:
        """Update profile fields (and, for admins, the disabled flag).

        Passwords are hashed before storage.  Unknown keys are rejected.
        """
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone():
                raise NotFoundError(f"User {user_id} not found")
            if updates.get("disabled") and user_id == PRIMARY_ADMIN_ID:
                raise PermissionDeniedError("The primary administrator cannot be disabled")
            if updates:
                fields = []
                values: List[Any] = []
                for key, value in updates.items():
                    if key == "password":
                        value = hash_password(value)
                    if isinstance(value, bool):
                        value = 1 if value else 0
                    fields.append(f"{key} = ?")
                    values.append(value)
                values.append(user_id)
                cursor.execute(
                    f"UPDATE users SET {', '.join(fields)}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    tuple(values),
                )
                if updates.get("disabled"):
                    cursor.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
                conn.commit()
            row = cursor.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        audit_details = {k: v for k, v in updates.items() if k != "password"}
        if "password" in updates:
            audit_details["password_changed"] = True
        await AuditService.log(actor_id, "update", "user", user_id, audit_details)
        return _row_to_user(row)

    @classmethod
    async def delete_user(cls, user_id: int, actor_id: Optional[int]) -> None:
        """Delete an account.  Admins cannot delete themselves or the primary admin.

        Workspace owners must hand over or delete their workspaces first;
        deleting them raises ``ConflictError``.
        """
        if user_id == actor_id:
            raise PermissionDeniedError("Administrators cannot delete their own account")
        if user_id == PRIMARY_ADMIN_ID:
            raise PermissionDeniedError("The primary administrator cannot be deleted")
        conn = get_connection()
        try:
            try:
                cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            except sqlite3.IntegrityError:
                conn.rollback()
                logger.warning("User %s still referenced, delete by %s refused", user_id, actor_id)
                raise ConflictError("User still owns workspaces")
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")
        logger.info("User %s deleted by %s", user_id, actor_id)
        await AuditService.log(actor_id, "delete", "user", user_id)

    @classmethod
    async def transition_role(cls, user_id: int, target: str) -> UserRead:
        """Self-service role change (consumer → provider and back)."""
        user = await cls.get_user(user_id)
        if not can_transition_to_role(user.role, target):
            raise PermissionDeniedError(f"Cannot switch from {user.role} to {target}")
        return await cls._set_role(user_id, target, actor_id=user_id)

    @classmethod
    async def set_role(cls, user_id: int, target: str, actor_id: Optional[int]) -> UserRead:
        """Administrative role assignment."""
        if user_id == PRIMARY_ADMIN_ID and target != "admin":
            raise PermissionDeniedError("The primary administrator must keep the admin role")
        await cls.get_user(user_id)
        return await cls._set_role(user_id, target, actor_id=actor_id)

    @classmethod
    async def _set_role(cls, user_id: int, target: str, actor_id: Optional[int]) -> UserRead:
        if target not in ROLE_IDS:
            raise ValueError(f"Unknown role '{target}'")
        conn = get_connection()
        try:
            conn.execute(
                "UPDATE users SET role_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (ROLE_IDS[target], user_id),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("User %s role changed to %s", user_id, target)
        await AuditService.log(actor_id, "role_change", "user", user_id, {"role": target})
        return await cls.get_user(user_id)
