"""
Pydantic models for tenant workspaces.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


WorkspaceType = Literal["city", "region", "enterprise", "global"]
WorkspaceStatus = Literal["active", "suspended", "archived"]
MemberRole = Literal["owner", "admin", "member"]


class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100, examples=["Austin Home Services"])
    slug: Optional[str] = Field(None, description="Generated from the name when omitted")
    type: WorkspaceType = "city"
    city: Optional[str] = None
    country: Optional[str] = None
    timezone: str = "UTC"
    commission_rate: float = Field(10.0, ge=0, le=100)
    currency: str = Field("USD", min_length=3, max_length=3)


class WorkspaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    type: Optional[WorkspaceType] = None
    status: Optional[WorkspaceStatus] = None
    city: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None
    commission_rate: Optional[float] = Field(None, ge=0, le=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @field_validator("name", "type", "status", "timezone", "commission_rate", "currency")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v


class WorkspaceMemberAdd(BaseModel):
    email: str
    role: MemberRole = "member"


class WorkspaceMemberUpdate(BaseModel):
    role: MemberRole


class WorkspaceMemberRead(BaseModel):
    user_id: int
    email: str
    full_name: Optional[str] = None
    role: MemberRole
    joined_at: Optional[datetime] = None


class WorkspaceRead(BaseModel):
    id: int
    name: str
    slug: str
    type: str
    status: str
    owner_id: int
    city: Optional[str] = None
    country: Optional[str] = None
    timezone: str
    commission_rate: float
    currency: str
    created_at: Optional[datetime] = None
    member_role: Optional[str] = Field(None, description="Role of the caller in this workspace")
    members: Optional[List[WorkspaceMemberRead]] = None

    model_config = {
        "from_attributes": True,
    }
