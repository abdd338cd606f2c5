"""
API endpoints for workspaces (marketplace tenants).

A workspace groups providers of a city, region or company.  Its owner
manages settings; owners and workspace admins manage members.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import get_current_user, require_roles
from loconomy_api.app.schemas.listing import ListingSearchResult
from loconomy_api.app.schemas.workspace import (
    WorkspaceCreate,
    WorkspaceMemberAdd,
    WorkspaceMemberRead,
    WorkspaceMemberUpdate,
    WorkspaceRead,
    WorkspaceUpdate,
)
from loconomy_api.app.services.listing_service import ListingService
from loconomy_api.app.services.workspace_service import WorkspaceService


router = APIRouter()


@router.post("/", response_model=WorkspaceRead, status_code=status.HTTP_201_CREATED)
async def create_workspace(
    data: WorkspaceCreate,
    current_user: Dict[str, Any] = Depends(require_roles("provider", "admin")),
) -> WorkspaceRead:
    """Create a workspace; the creator becomes its owner."""
    try:
        return await WorkspaceService.create_workspace(data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[WorkspaceRead])
async def list_my_workspaces(current_user: Dict[str, Any] = Depends(get_current_user)) -> List[WorkspaceRead]:
    return await WorkspaceService.list_for_user(current_user.get("user_id"))


@router.get("/{workspace_id}", response_model=WorkspaceRead)
async def get_workspace(workspace_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> WorkspaceRead:
    try:
        return await WorkspaceService.get_workspace(workspace_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{workspace_id}", response_model=WorkspaceRead)
async def update_workspace(
    workspace_id: int,
    data: WorkspaceUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> WorkspaceRead:
    try:
        return await WorkspaceService.update_workspace(workspace_id, data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/{workspace_id}/listings", response_model=ListingSearchResult)
async def workspace_listings(
    workspace_id: int,
    page: int = 1,
    limit: int = 20,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ListingSearchResult:
    """Active listings published inside the workspace."""
    try:
        await WorkspaceService.get_workspace(workspace_id, current_user)
        return await ListingService.search(workspace_id=workspace_id, page=page, limit=limit)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/{workspace_id}/members", response_model=WorkspaceMemberRead, status_code=status.HTTP_201_CREATED)
async def add_member(
    workspace_id: int,
    data: WorkspaceMemberAdd,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> WorkspaceMemberRead:
    try:
        return await WorkspaceService.add_member(workspace_id, data.email, data.role, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.put("/{workspace_id}/members/{user_id}", response_model=WorkspaceMemberRead)
async def change_member_role(
    workspace_id: int,
    user_id: int,
    data: WorkspaceMemberUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> WorkspaceMemberRead:
    try:
        return await WorkspaceService.change_member_role(workspace_id, user_id, data.role, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/{workspace_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    workspace_id: int,
    user_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> None:
    try:
        await WorkspaceService.remove_member(workspace_id, user_id, current_user)
    except ValueError as e:
        raise to_http_exception(e)
