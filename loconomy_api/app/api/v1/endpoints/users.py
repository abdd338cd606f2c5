"""
User endpoints for API v1.

Users manage their own profile under ``/users/me``.  Administrators
list, inspect, update, disable and delete accounts and assign roles.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.rate_limit import rate_limit
from loconomy_api.app.core.security import get_current_user, require_roles
from loconomy_api.app.schemas.user import RoleChange, UserAdminUpdate, UserRead, UserUpdate
from loconomy_api.app.services.user_service import UserService


router = APIRouter()


def _own_user_id(current_user: Dict[str, Any]) -> int:
    if current_user.get("user_id") is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Service tokens have no user profile")
    return current_user["user_id"]


@router.get("/me", response_model=UserRead)
async def read_me(current_user: Dict[str, Any] = Depends(get_current_user)) -> UserRead:
    try:
        return await UserService.get_user(_own_user_id(current_user))
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/me", response_model=UserRead, dependencies=[Depends(rate_limit("profile_update"))])
async def update_me(data: UserUpdate, current_user: Dict[str, Any] = Depends(get_current_user)) -> UserRead:
    user_id = _own_user_id(current_user)
    try:
        return await UserService.update_user(user_id, data.model_dump(exclude_unset=True), actor_id=user_id)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/me/role", response_model=UserRead)
async def switch_my_role(data: RoleChange, current_user: Dict[str, Any] = Depends(get_current_user)) -> UserRead:
    """Switch between the consumer and provider roles.

    Allowed moves follow the role transition table: consumers may
    become providers and back, administrators may step down.
    """
    try:
        return await UserService.transition_role(_own_user_id(current_user), data.role)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[UserRead])
async def list_users(
    role: Optional[str] = Query(None, description="Filter by role name"),
    disabled: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Substring of email or name"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> List[UserRead]:
    try:
        return await UserService.list_users(role=role, disabled=disabled, search=search, limit=limit, offset=offset)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> UserRead:
    if current_user.get("role") != "admin" and current_user.get("user_id") != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    try:
        return await UserService.get_user(user_id)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    data: UserAdminUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> UserRead:
    """Update a user's profile, password or disabled flag.

    Users may update themselves (except ``disabled``); administrators
    may update anyone.
    """
    is_admin = current_user.get("role") == "admin"
    if not is_admin and current_user.get("user_id") != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    updates = data.model_dump(exclude_unset=True)
    if "disabled" in updates and not is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only administrators can disable accounts")
    try:
        return await UserService.update_user(user_id, updates, actor_id=current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{user_id}/role", response_model=UserRead)
async def set_user_role(
    user_id: int,
    data: RoleChange,
    current_user: Dict[str, Any] = Depends(require_roles("admin")),
) -> UserRead:
    try:
        return await UserService.set_role(user_id, data.role, actor_id=current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, current_user: Dict[str, Any] = Depends(require_roles("admin"))) -> None:
    try:
        await UserService.delete_user(user_id, actor_id=current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)
