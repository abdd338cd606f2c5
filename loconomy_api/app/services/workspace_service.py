"""
Tenant workspaces.

A workspace groups providers operating in one market (a city, a
region, an enterprise account).  Listings may be attached to a
workspace, in which case only its members can publish into it.
Membership roles are ``owner`` (full control), ``admin`` (manages
members) and ``member``.
"""

import logging
import re
import sqlite3
from typing import Any, Dict, List, Optional

from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from loconomy_api.app.schemas.workspace import (
    WorkspaceCreate,
    WorkspaceMemberRead,
    WorkspaceRead,
    WorkspaceUpdate,
)
from loconomy_api.app.services.audit_service import AuditService


logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{1,48}[a-z0-9]$")
SLUG_MAX_LENGTH = 50


def generate_slug(name: str) -> str:
    """Derive a URL slug from a workspace name."""
    slug = name.lower().replace("_", " ")
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].strip("-")
    if len(slug) < 3:
        slug = f"workspace-{slug}".strip("-")
    return slug


def validate_slug(slug: str) -> bool:
    return bool(SLUG_PATTERN.match(slug))


def can_manage_members(role: Optional[str]) -> bool:
    return role in ("owner", "admin")


def can_manage_workspace(role: Optional[str]) -> bool:
    return role == "owner"


def _unique_slug(cursor: sqlite3.Cursor, base: str) -> str:
    candidate = base
    suffix = 2
    while cursor.execute("SELECT 1 FROM workspaces WHERE slug = ?", (candidate,)).fetchone():
        tail = f"-{suffix}"
        candidate = base[: SLUG_MAX_LENGTH - len(tail)].rstrip("-") + tail
        suffix += 1
    return candidate


def _row_to_workspace(row: sqlite3.Row, member_role: Optional[str] = None) -> WorkspaceRead:
    return WorkspaceRead(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        type=row["type"],
        status=row["status"],
        owner_id=row["owner_id"],
        city=row["city"],
        country=row["country"],
        timezone=row["timezone"],
        commission_rate=row["commission_rate"],
        currency=row["currency"],
        created_at=row["created_at"],
        member_role=member_role,
    )


class WorkspaceService:

    @classmethod
    def member_role(cls, workspace_id: int, user_id: Optional[int], conn: sqlite3.Connection) -> Optional[str]:
        if user_id is None:
            return None
        row = conn.execute(
            "SELECT role FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
            (workspace_id, user_id),
        ).fetchone()
        return row["role"] if row else None

    @classmethod
    async def create_workspace(cls, data: WorkspaceCreate, current_user: Dict[str, Any]) -> WorkspaceRead:
        """Create a workspace owned by the caller.

        An explicit slug must be valid and free; a generated one gets a
        numeric suffix on collision.
        """
        owner_id = current_user["user_id"]
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if data.slug:
                slug = data.slug.strip().lower()
                if not validate_slug(slug):
                    raise ValueError(
                        "Slug must be 3-50 characters of lowercase letters, digits and hyphens, "
                        "starting and ending with a letter or digit"
                    )
                if cursor.execute("SELECT 1 FROM workspaces WHERE slug = ?", (slug,)).fetchone():
                    raise ConflictError(f"Slug '{slug}' is already taken")
            else:
                slug = _unique_slug(cursor, generate_slug(data.name))
            cursor.execute(
                """
                INSERT INTO workspaces (name, slug, type, owner_id, city, country, timezone, commission_rate, currency)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.name.strip(),
                    slug,
                    data.type,
                    owner_id,
                    data.city,
                    data.country,
                    data.timezone,
                    data.commission_rate,
                    data.currency.upper(),
                ),
            )
            workspace_id = cursor.lastrowid
            cursor.execute(
                "INSERT INTO workspace_members (workspace_id, user_id, role) VALUES (?, ?, 'owner')",
                (workspace_id, owner_id),
            )
            conn.commit()
            row = cursor.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
        finally:
            conn.close()
        logger.info("Workspace %s (%s) created by user %s", workspace_id, slug, owner_id)
        await AuditService.log(owner_id, "create", "workspace", workspace_id, {"slug": slug})
        return _row_to_workspace(row, "owner")

    @classmethod
    async def list_for_user(cls, user_id: int) -> List[WorkspaceRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT w.*, m.role AS member_role
                FROM workspaces w JOIN workspace_members m ON m.workspace_id = w.id
                WHERE m.user_id = ?
                ORDER BY w.name
                """,
                (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_workspace(row, row["member_role"]) for row in rows]

    @classmethod
    async def get_workspace(cls, workspace_id: int, current_user: Dict[str, Any]) -> WorkspaceRead:
        """Return a workspace with its members; visible to members and admins."""
        conn = get_connection()
        try:
            row = conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
            if not row:
                raise NotFoundError("Workspace not found")
            role = cls.member_role(workspace_id, current_user.get("user_id"), conn)
            if role is None and current_user.get("role") != "admin":
                raise PermissionDeniedError("Not a member of this workspace")
            members = conn.execute(
                """
                SELECT m.user_id, m.role, m.joined_at, u.email, u.full_name
                FROM workspace_members m JOIN users u ON u.id = m.user_id
                WHERE m.workspace_id = ?
                ORDER BY m.joined_at, m.id
                """,
                (workspace_id,),
            ).fetchall()
        finally:
            conn.close()
        workspace = _row_to_workspace(row, role)
        workspace.members = [
            WorkspaceMemberRead(
                user_id=m["user_id"], email=m["email"], full_name=m["full_name"], role=m["role"], joined_at=m["joined_at"]
            )
            for m in members
        ]
        return workspace

    @classmethod
    async def update_workspace(
        cls, workspace_id: int, data: WorkspaceUpdate, current_user: Dict[str, Any]
    ) -> WorkspaceRead:
        updates = data.model_dump(exclude_unset=True)
        conn = get_connection()
        try:
            cursor = conn.cursor()
            if not cursor.execute("SELECT id FROM workspaces WHERE id = ?", (workspace_id,)).fetchone():
                raise NotFoundError("Workspace not found")
            role = cls.member_role(workspace_id, current_user.get("user_id"), conn)
            if not can_manage_workspace(role) and current_user.get("role") != "admin":
                raise PermissionDeniedError("Only the workspace owner can change its settings")
            if "currency" in updates and updates["currency"]:
                updates["currency"] = updates["currency"].upper()
            if updates:
                fields = ", ".join(f"{key} = ?" for key in updates)
                cursor.execute(
                    f"UPDATE workspaces SET {fields}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (*updates.values(), workspace_id),
                )
                conn.commit()
        finally:
            conn.close()
        await AuditService.log(current_user.get("user_id"), "update", "workspace", workspace_id, updates)
        return await cls.get_workspace(workspace_id, current_user)

    @classmethod
    def _require_member_manager(cls, workspace_id: int, current_user: Dict[str, Any], conn: sqlite3.Connection) -> None:
        if not conn.execute("SELECT id FROM workspaces WHERE id = ?", (workspace_id,)).fetchone():
            raise NotFoundError("Workspace not found")
        role = cls.member_role(workspace_id, current_user.get("user_id"), conn)
        if not can_manage_members(role) and current_user.get("role") != "admin":
            raise PermissionDeniedError("Only workspace owners and admins can manage members")

    @classmethod
    async def add_member(
        cls, workspace_id: int, email: str, role: str, current_user: Dict[str, Any]
    ) -> WorkspaceMemberRead:
        conn = get_connection()
        try:
            cls._require_member_manager(workspace_id, current_user, conn)
            caller_role = cls.member_role(workspace_id, current_user.get("user_id"), conn)
            if role == "owner" and caller_role != "owner" and current_user.get("role") != "admin":
                raise PermissionDeniedError("Only owners can add other owners")
            user = conn.execute(
                "SELECT id, email, full_name FROM users WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
            if not user:
                raise NotFoundError(f"No user with email {email}")
            try:
                conn.execute(
                    "INSERT INTO workspace_members (workspace_id, user_id, role) VALUES (?, ?, ?)",
                    (workspace_id, user["id"], role),
                )
            except sqlite3.IntegrityError:
                raise ConflictError("User is already a member of this workspace")
            conn.commit()
            member = conn.execute(
                "SELECT joined_at FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user["id"]),
            ).fetchone()
        finally:
            conn.close()
        await AuditService.log(
            current_user.get("user_id"), "add_member", "workspace", workspace_id, {"user_id": user["id"], "role": role}
        )
        return WorkspaceMemberRead(
            user_id=user["id"], email=user["email"], full_name=user["full_name"], role=role, joined_at=member["joined_at"]
        )

    @classmethod
    async def change_member_role(
        cls, workspace_id: int, user_id: int, role: str, current_user: Dict[str, Any]
    ) -> WorkspaceMemberRead:
        """Change a member's role.  The last owner cannot be demoted."""
        conn = get_connection()
        try:
            cls._require_member_manager(workspace_id, current_user, conn)
            current = cls.member_role(workspace_id, user_id, conn)
            if current is None:
                raise NotFoundError("Member not found")
            caller_role = cls.member_role(workspace_id, current_user.get("user_id"), conn)
            is_admin = current_user.get("role") == "admin"
            if (current == "owner" or role == "owner") and caller_role != "owner" and not is_admin:
                raise PermissionDeniedError("Only owners can change ownership")
            if current == "owner" and role != "owner":
                owners = conn.execute(
                    "SELECT COUNT(*) AS count FROM workspace_members WHERE workspace_id = ? AND role = 'owner'",
                    (workspace_id,),
                ).fetchone()["count"]
                if owners <= 1:
                    raise ConflictError("A workspace must keep at least one owner")
            conn.execute(
                "UPDATE workspace_members SET role = ? WHERE workspace_id = ? AND user_id = ?",
                (role, workspace_id, user_id),
            )
            conn.commit()
            member = conn.execute(
                """
                SELECT m.user_id, m.role, m.joined_at, u.email, u.full_name
                FROM workspace_members m JOIN users u ON u.id = m.user_id
                WHERE m.workspace_id = ? AND m.user_id = ?
                """,
                (workspace_id, user_id),
            ).fetchone()
        finally:
            conn.close()
        await AuditService.log(
            current_user.get("user_id"), "change_member_role", "workspace", workspace_id, {"user_id": user_id, "role": role}
        )
        return WorkspaceMemberRead(
            user_id=member["user_id"],
            email=member["email"],
            full_name=member["full_name"],
            role=member["role"],
            joined_at=member["joined_at"],
        )

    @classmethod
    async def remove_member(cls, workspace_id: int, user_id: int, current_user: Dict[str, Any]) -> None:
        """Remove a member.  Owners cannot be removed."""
        conn = get_connection()
        try:
            cls._require_member_manager(workspace_id, current_user, conn)
            current = cls.member_role(workspace_id, user_id, conn)
            if current is None:
                raise NotFoundError("Member not found")
            if current == "owner":
                raise ConflictError("The workspace owner cannot be removed")
            conn.execute(
                "DELETE FROM workspace_members WHERE workspace_id = ? AND user_id = ?", (workspace_id, user_id)
            )
            conn.commit()
        finally:
            conn.close()
        await AuditService.log(
            current_user.get("user_id"), "remove_member", "workspace", workspace_id, {"user_id": user_id}
        )
