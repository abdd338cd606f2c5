"""
Pydantic models for runtime settings and audit records.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel


SettingType = Literal["string", "int", "float", "bool"]


class SettingWrite(BaseModel):
    value: Any
    type: SettingType = "string"


class SettingRead(BaseModel):
    key: str
    value: Any
    type: SettingType


class AuditLogRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    object_type: Optional[str] = None
    object_id: Optional[int] = None
    timestamp: str
    details: Optional[Any] = None
