"""
Authentication endpoints.

Clients either keep a bearer token from ``/auth/login`` or open a
cookie session with ``/auth/session``.  ``/auth/me`` tells a front end
what the caller may see: role, permissions, landing page and
navigation.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from loconomy_api.app.core.config import settings
from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.rate_limit import rate_limit
from loconomy_api.app.core.rbac import can_access_route, get_permissions, get_role_navigation, get_role_redirect_url
from loconomy_api.app.core.security import (
    create_access_token,
    create_session,
    current_role,
    delete_session,
    get_optional_user,
)
from loconomy_api.app.schemas.user import (
    LoginRequest,
    MeResponse,
    RouteCheck,
    RouteCheckResult,
    SocialLoginRequest,
    Token,
    UserCreate,
    UserRead,
)
from loconomy_api.app.services.user_service import UserService


router = APIRouter()


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("auth_signup"))],
)
async def register(user: UserCreate) -> UserRead:
    """Register a new account.

    The very first account becomes the administrator; everybody else
    starts as a consumer and may later switch to provider.
    """
    try:
        return await UserService.create_user(user)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/login", response_model=Token, dependencies=[Depends(rate_limit("auth_signin"))])
async def login(credentials: LoginRequest) -> Token:
    user = await UserService.authenticate(credentials.email, credentials.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return Token(access_token=create_access_token({"sub": user.email}))


@router.post("/session", response_model=UserRead, dependencies=[Depends(rate_limit("auth_signin"))])
async def open_session(credentials: LoginRequest, request: Request, response: Response) -> UserRead:
    """Sign in with a server-side session stored in an HTTP-only cookie."""
    user = await UserService.authenticate(credentials.email, credentials.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    session = create_session(user.id, request.headers.get("user-agent"))
    response.set_cookie(
        settings.session_cookie_name,
        session["token"],
        max_age=settings.session_expire_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.app_base_url.startswith("https://"),
    )
    return user


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(request: Request, response: Response) -> Response:
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        delete_session(token)
    response.delete_cookie(settings.session_cookie_name)
    response.status_code = status.HTTP_204_NO_CONTENT
    return response


@router.post("/social-login", response_model=Token)
async def social_login(payload: SocialLoginRequest) -> Token:
    """Exchange a verified social identity for a bearer token.

    Meant to be called by the OAuth callback handler once the identity
    provider confirmed the user.  Unknown identities get a new consumer
    account; 409 when their email already belongs to another account.
    """
    try:
        user = await UserService.social_login(payload)
    except ValueError as e:
        raise to_http_exception(e)
    return Token(access_token=create_access_token({"sub": user.email}))


@router.get("/me", response_model=MeResponse)
async def me(current_user: Optional[Dict[str, Any]] = Depends(get_optional_user)) -> MeResponse:
    role = current_role(current_user)
    user = None
    if current_user and current_user.get("user_id") is not None and current_user.get("sub") != "service":
        try:
            user = await UserService.get_user(current_user["user_id"])
        except ValueError as e:
            raise to_http_exception(e)
    return MeResponse(
        user=user,
        role=role,
        permissions=get_permissions(role),
        redirect_url=get_role_redirect_url(role),
        navigation=get_role_navigation(role),
    )


@router.post("/check-route", response_model=RouteCheckResult)
async def check_route(
    data: RouteCheck, current_user: Optional[Dict[str, Any]] = Depends(get_optional_user)
) -> RouteCheckResult:
    role = current_role(current_user)
    return RouteCheckResult(path=data.path, role=role, allowed=can_access_route(role, data.path))
