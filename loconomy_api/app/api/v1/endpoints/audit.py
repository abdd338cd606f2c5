"""
Audit log endpoints for API v1.

Administrators can browse the record of create, update, delete and
moderation actions, filtered by acting user, object type, action and
date range.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from loconomy_api.app.core.security import require_roles
from loconomy_api.app.schemas.setting import AuditLogRead
from loconomy_api.app.services.audit_service import AuditService

router = APIRouter()


@router.get("/logs", response_model=List[AuditLogRead])
async def list_audit_logs(
    user_id: Optional[int] = Query(None, description="Filter by acting user ID"),
    object_type: Optional[str] = Query(None, description="Filter by object type (listing, booking, review, etc.)"),
    action: Optional[str] = Query(None, description="Filter by action (create, update, delete, moderate)"),
    start_date: Optional[str] = Query(None, description="Start date (ISO format) for filtering"),
    end_date: Optional[str] = Query(None, description="End date (ISO format) for filtering"),
    limit: int = Query(100, ge=1, le=500, description="Maximum number of logs to return"),
    offset: int = Query(0, ge=0, description="Number of logs to skip"),
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> List[Dict[str, Any]]:
    """Retrieve audit logs ordered by timestamp descending."""
    return await AuditService.list_logs(
        user_id=user_id,
        object_type=object_type,
        action=action,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
