"""
Cookie consent endpoints.

Guests identify themselves with a client-generated ``session_id``;
signed-in users are matched by account.  Recording a decision never
overwrites an earlier one.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import get_optional_user
from loconomy_api.app.schemas.consent import ConsentCategory, ConsentCreate, ConsentRead, ConsentState
from loconomy_api.app.services.consent_service import ConsentService


router = APIRouter()


@router.get("/categories", response_model=List[ConsentCategory])
async def consent_categories() -> List[ConsentCategory]:
    return ConsentService.categories()


@router.post("/", response_model=ConsentRead, status_code=status.HTTP_201_CREATED)
async def record_consent(
    data: ConsentCreate,
    request: Request,
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
) -> ConsentRead:
    """Store the visitor's answer to the cookie banner."""
    user_id = current_user.get("user_id") if current_user else None
    try:
        return await ConsentService.record_consent(
            data,
            user_id=user_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/", response_model=ConsentState)
async def current_consent(
    session_id: Optional[str] = Query(None, max_length=128),
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
) -> ConsentState:
    """Latest decision and whether the banner should be shown again."""
    user_id = current_user.get("user_id") if current_user else None
    return await ConsentService.get_consent(user_id=user_id, session_id=session_id)
