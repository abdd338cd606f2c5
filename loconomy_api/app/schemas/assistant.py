"""
Pydantic models for the AI assistant and voice commands.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class VoiceCommand(BaseModel):
    text: str = Field(..., min_length=1, max_length=500, examples=["find a plumber in Austin"])
    locale: Optional[str] = Field(None, description="Defaults to the Accept-Language header")


class VoiceCommandResult(BaseModel):
    action: Literal["search", "book", "cancel", "help", "navigate", "confirm", "deny"]
    data: Dict[str, Any] = Field(default_factory=dict)
    locale: str
    reply: Optional[str] = None


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=4000)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1, max_length=50)
    temperature: float = Field(0.7, ge=0, le=2)


class ChatResponse(BaseModel):
    reply: str
    model: str
    usage: Optional[Dict[str, Any]] = None
