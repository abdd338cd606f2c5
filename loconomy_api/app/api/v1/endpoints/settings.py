"""
Settings endpoints for API v1.

Administrators view and change runtime switches such as
``booking_auto_confirm``, ``listing_auto_approve`` and
``review_auto_approve``.  Each setting is stored as a key/value pair
with a type used for deserialisation.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import require_roles
from loconomy_api.app.schemas.setting import SettingRead, SettingWrite
from loconomy_api.app.services.settings_service import SettingsService


router = APIRouter()

admin_only = require_roles("admin")


@router.get("/", response_model=List[SettingRead])
async def list_settings(current_user: Dict[str, Any] = Depends(admin_only)) -> List[Dict[str, Any]]:
    return await SettingsService.list_settings()


@router.get("/{key}", response_model=SettingRead)
async def get_setting(key: str, current_user: Dict[str, Any] = Depends(admin_only)) -> Dict[str, Any]:
    """Retrieve a single stored setting by key."""
    setting = await SettingsService.get_setting(key)
    if not setting:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Setting not found")
    return setting


@router.put("/{key}", response_model=SettingRead)
async def upsert_setting(key: str, body: SettingWrite, current_user: Dict[str, Any] = Depends(admin_only)) -> Dict[str, Any]:
    """Insert or update a setting.

    Supported types are ``string``, ``int``, ``float`` and ``bool``.
    """
    try:
        return await SettingsService.upsert_setting(key, body.value, body.type, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_setting(key: str, current_user: Dict[str, Any] = Depends(admin_only)) -> None:
    try:
        await SettingsService.delete_setting(key, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)
