"""
API endpoints for the AI assistant.

``/voice-command`` interprets an already transcribed phrase in one of
the supported locales.  ``/chat`` forwards a conversation to the
configured language model and answers 503 when no model is configured.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.i18n import resolve_locale
from loconomy_api.app.core.rate_limit import rate_limit
from loconomy_api.app.core.security import get_current_user
from loconomy_api.app.schemas.assistant import ChatRequest, ChatResponse, VoiceCommand, VoiceCommandResult
from loconomy_api.app.services.assistant_service import (
    AssistantService,
    UnrecognizedCommandError,
    parse_voice_command,
)


router = APIRouter()


@router.post("/voice-command", response_model=VoiceCommandResult)
async def voice_command(
    data: VoiceCommand,
    accept_language: Optional[str] = Header(None),
) -> VoiceCommandResult:
    locale = data.locale or resolve_locale(accept_language)
    try:
        return parse_voice_command(data.text, locale)
    except UnrecognizedCommandError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post("/chat", response_model=ChatResponse, dependencies=[Depends(rate_limit("api_general"))])
async def chat(data: ChatRequest, current_user: Dict[str, Any] = Depends(get_current_user)) -> ChatResponse:
    try:
        return await AssistantService.chat(data, current_user.get("user_id"))
    except ValueError as e:
        raise to_http_exception(e)
