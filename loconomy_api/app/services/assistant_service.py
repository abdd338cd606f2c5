"""
AI assistant: voice command parsing and the chat proxy.

Voice commands are matched against the locale's keyword lists in a
fixed order (search, book, cancel, help, navigate, yes, no) so that a
phrase such as "cancel" resolves to the cancel action rather than a
"no".  Chat requests are forwarded to an OpenAI-compatible
``/chat/completions`` endpoint with a system prompt describing the
marketplace.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from loconomy_api.app.core.config import settings
from loconomy_api.app.core.errors import IntegrationError
from loconomy_api.app.core.i18n import get_keywords, get_phrase, normalize_locale
from loconomy_api.app.schemas.assistant import ChatRequest, ChatResponse, VoiceCommandResult
from loconomy_api.app.services.listing_service import LISTING_CATEGORIES


logger = logging.getLogger(__name__)

# keyword group -> action, in matching order
COMMAND_ORDER: List[Tuple[str, str]] = [
    ("search", "search"),
    ("book", "book"),
    ("cancel", "cancel"),
    ("help", "help"),
    ("navigate", "navigate"),
    ("yes", "confirm"),
    ("no", "deny"),
]

SYSTEM_PROMPT = (
    "You are the Loconomy assistant. Loconomy is a marketplace where customers book local service "
    "providers. Help users find services, understand bookings, pricing and cancellations, and help "
    "providers write good listings. Service categories: {categories}. Keep answers short and practical."
)


class UnrecognizedCommandError(ValueError):
    """The voice command did not match any keyword."""


def _find_keyword(text: str, keywords: List[str]) -> Optional[re.Match]:
    for keyword in keywords:
        match = re.search(rf"(?<!\w){re.escape(keyword.lower())}(?!\w)", text)
        if match:
            return match
    return None


def parse_voice_command(text: str, locale: str) -> VoiceCommandResult:
    """Interpret a transcribed voice command.

    Search and navigate commands carry the text that follows the
    matched keyword as ``query`` / ``destination``.
    """
    locale = normalize_locale(locale)
    lowered = text.strip().lower()
    keywords = get_keywords(locale)
    for group, action in COMMAND_ORDER:
        match = _find_keyword(lowered, keywords[group])
        if not match:
            continue
        data: Dict[str, Any] = {}
        reply = None
        if action == "search":
            data["query"] = lowered[match.end():].strip()
            reply = get_phrase(locale, "searching")
        elif action == "navigate":
            data["destination"] = lowered[match.end():].strip()
        elif action == "help":
            reply = get_phrase(locale, "welcome")
        return VoiceCommandResult(action=action, data=data, locale=locale, reply=reply)
    raise UnrecognizedCommandError(get_phrase(locale, "not_understood"))


def build_messages(request: ChatRequest) -> List[Dict[str, str]]:
    system = {"role": "system", "content": SYSTEM_PROMPT.format(categories=", ".join(LISTING_CATEGORIES))}
    return [system] + [message.model_dump() for message in request.messages]


class AssistantService:

    @classmethod
    async def chat(cls, request: ChatRequest, user_id: Optional[int] = None) -> ChatResponse:
        """Send the conversation to the language model and return its answer."""
        if not settings.openai_api_key:
            raise IntegrationError("The AI assistant is not configured")
        url = f"{settings.openai_base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": settings.openai_model,
            "messages": build_messages(request),
            "temperature": request.temperature,
        }
        headers = {"Authorization": f"Bearer {settings.openai_api_key}"}
        try:
            response = httpx.post(url, json=payload, headers=headers, timeout=30)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            logger.exception("Chat completion request failed")
            raise IntegrationError(f"AI service request failed: {exc}", upstream=True)
        except ValueError as exc:
            logger.exception("Chat completion returned invalid JSON")
            raise IntegrationError("AI service returned an invalid response", upstream=True) from exc
        try:
            reply = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            logger.error("Unexpected chat completion payload: %s", body)
            raise IntegrationError("AI service returned an invalid response", upstream=True) from exc
        logger.info("Chat reply generated for user %s", user_id)
        return ChatResponse(reply=reply.strip(), model=body.get("model", settings.openai_model), usage=body.get("usage"))
