"""
Privacy endpoints: per-user privacy settings and GDPR data subject
requests (export and erasure).  All routes act on the caller's own
account.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import get_current_user
from loconomy_api.app.schemas.consent import (
    DataDeletionRequest,
    DataDeletionResult,
    DataExport,
    DataExportRequest,
    PrivacySettings,
    PrivacySettingsUpdate,
)
from loconomy_api.app.services.consent_service import ConsentService


router = APIRouter()


def _account_id(current_user: Dict[str, Any]) -> int:
    if current_user.get("user_id") is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Privacy requests require a user account")
    return current_user["user_id"]


@router.get("/settings", response_model=PrivacySettings)
async def get_privacy_settings(current_user: Dict[str, Any] = Depends(get_current_user)) -> PrivacySettings:
    return await ConsentService.get_privacy_settings(_account_id(current_user))


@router.put("/settings", response_model=PrivacySettings)
async def update_privacy_settings(
    data: PrivacySettingsUpdate, current_user: Dict[str, Any] = Depends(get_current_user)
) -> PrivacySettings:
    return await ConsentService.update_privacy_settings(_account_id(current_user), data)


@router.post("/export", response_model=DataExport)
async def export_my_data(
    data: DataExportRequest, current_user: Dict[str, Any] = Depends(get_current_user)
) -> DataExport:
    """Return the caller's data for the requested categories as JSON."""
    try:
        return await ConsentService.export_data(_account_id(current_user), list(data.categories))
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/delete", response_model=DataDeletionResult)
async def delete_my_data(
    data: DataDeletionRequest, current_user: Dict[str, Any] = Depends(get_current_user)
) -> DataDeletionResult:
    """Anonymise the caller's account.

    The body must carry ``confirm: true``.  Existing sessions stop
    working because the account is disabled.
    """
    if not data.confirm:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Deletion must be confirmed")
    try:
        return await ConsentService.delete_account_data(_account_id(current_user), data.reason)
    except ValueError as e:
        raise to_http_exception(e)
