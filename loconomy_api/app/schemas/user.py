"""
Pydantic models for users and authentication.

Passwords are only ever accepted, never returned.  Users created via a
social login carry ``social_provider``/``social_id`` and may have no
password at all.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.i18n import normalize_locale


def _check_email(value: str) -> str:
    value = value.strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        raise ValueError("Invalid email address")
    return value


class UserBase(BaseModel):
    email: str = Field(..., examples=["user@example.com"])
    full_name: Optional[str] = Field(None, max_length=200, examples=["Jane Doe"])
    locale: str = Field("en", description="Preferred locale (en, es, fr, de)")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("locale")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        return normalize_locale(v)


class UserCreate(UserBase):
    """Registration payload."""

    password: str = Field(..., min_length=8, examples=["strongpassword"])


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return v.strip().lower()


class SocialLoginRequest(BaseModel):
    """Payload of an OAuth callback relayed by the front end.

    The identity provider has already verified the user; the API only
    maps ``(social_provider, social_id)`` to an account.
    """

    social_provider: str = Field(..., min_length=1, examples=["google"])
    social_id: str = Field(..., min_length=1, examples=["1234567890"])
    email: Optional[str] = None
    full_name: Optional[str] = None
    locale: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=200)
    locale: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=40)
    city: Optional[str] = Field(None, max_length=120)
    bio: Optional[str] = Field(None, max_length=2000)
    password: Optional[str] = Field(None, min_length=8)

    @field_validator("locale")
    @classmethod
    def validate_locale(cls, v: Optional[str]) -> Optional[str]:
        return normalize_locale(v) if v is not None else None


class UserAdminUpdate(UserUpdate):
    disabled: Optional[bool] = None


class RoleChange(BaseModel):
    role: str = Field(..., description="Target role name (consumer, provider or admin)")


class UserRead(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    role: str
    locale: str = "en"
    phone: Optional[str] = None
    city: Optional[str] = None
    bio: Optional[str] = None
    social_provider: Optional[str] = None
    disabled: bool = False
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True,
    }


class NavigationItem(BaseModel):
    href: str
    label: str


class MeResponse(BaseModel):
    """Everything the front end needs to render for the signed-in user."""

    user: Optional[UserRead]
    role: str
    permissions: List[str]
    redirect_url: str
    navigation: List[NavigationItem]


class RouteCheck(BaseModel):
    path: str = Field(..., min_length=1, examples=["/provider/listings"])


class RouteCheckResult(BaseModel):
    path: str
    role: str
    allowed: bool
