"""
Pydantic models for cookie consent and GDPR privacy requests.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


ConsentStatus = Literal["accepted", "rejected", "customized"]
DataCategory = Literal["profile", "bookings", "preferences", "communications", "billing", "all"]


class ConsentCreate(BaseModel):
    """A visitor's answer to the cookie banner.

    Anonymous visitors must send the ``session_id`` their browser
    generated; signed-in users are recorded against their account.
    Optional categories default to on for ``accepted``.
    """

    status: ConsentStatus
    session_id: Optional[str] = Field(None, max_length=128)
    analytics: Optional[bool] = None
    marketing: Optional[bool] = None
    preferences: Optional[bool] = None


class ConsentRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    status: ConsentStatus
    necessary: bool
    analytics: bool
    marketing: bool
    preferences: bool
    version: str
    created_at: Optional[datetime] = None


class ConsentState(BaseModel):
    consent: Optional[ConsentRead]
    show_banner: bool
    current_version: str


class ConsentCategory(BaseModel):
    id: str
    name: str
    description: str
    required: bool


class PrivacySettings(BaseModel):
    email_marketing: bool = False
    sms_marketing: bool = False
    push_notifications: bool = True
    data_analytics: bool = True
    personalized_ads: bool = False
    third_party_sharing: bool = False
    profile_visibility: Literal["private", "public", "limited"] = "limited"


class PrivacySettingsUpdate(BaseModel):
    email_marketing: Optional[bool] = None
    sms_marketing: Optional[bool] = None
    push_notifications: Optional[bool] = None
    data_analytics: Optional[bool] = None
    personalized_ads: Optional[bool] = None
    third_party_sharing: Optional[bool] = None
    profile_visibility: Optional[Literal["private", "public", "limited"]] = None


class DataExportRequest(BaseModel):
    categories: List[DataCategory] = Field(default_factory=lambda: ["all"])

    @model_validator(mode="after")
    def not_empty(self) -> "DataExportRequest":
        if not self.categories:
            raise ValueError("At least one data category is required")
        return self


class DataExport(BaseModel):
    request_id: int
    user_id: int
    exported_at: datetime
    categories: List[str]
    data: Dict[str, Any]


class DataDeletionRequest(BaseModel):
    confirm: bool = Field(..., description="Must be true to anonymise the account")
    reason: Optional[str] = Field(None, max_length=1000)


class DataDeletionResult(BaseModel):
    request_id: int
    user_id: int
    status: str
