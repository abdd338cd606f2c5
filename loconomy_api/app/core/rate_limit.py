"""
In-process rate limiting.

Each named policy allows a number of requests per fixed window.  Hits
are counted per ``"{policy}_{identifier}"`` key in a dictionary guarded
by a lock; the dictionary is purged of expired windows once it grows
past ``MAX_KEYS`` entries.  The limiter is per process, which is
enough for a single uvicorn worker; deployments running several
workers get a proportionally higher effective limit.

Endpoints attach limits with the :func:`rate_limit` dependency::

    @router.post("/login", dependencies=[Depends(rate_limit("auth_signin"))])
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request, status

from .config import settings
from .security import get_optional_user


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset: float
    limit: int


POLICIES: Dict[str, RateLimitPolicy] = {
    "auth_signin": RateLimitPolicy(5, 15 * 60),
    "auth_signup": RateLimitPolicy(3, 60 * 60),
    "api_general": RateLimitPolicy(100, 60),
    "password_reset": RateLimitPolicy(3, 60 * 60),
    "profile_update": RateLimitPolicy(10, 5 * 60),
    "search": RateLimitPolicy(50, 60),
    "booking_create": RateLimitPolicy(5, 10 * 60),
}

MAX_KEYS = 10_000


class RateLimiter:
    """Fixed-window counter keyed by policy and caller identifier."""

    def __init__(self, policies: Optional[Dict[str, RateLimitPolicy]] = None, max_keys: int = MAX_KEYS) -> None:
        self.policies = dict(policies or POLICIES)
        self.max_keys = max_keys
        # key -> (count, window reset timestamp)
        self._hits: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def _purge(self, now: float) -> None:
        if len(self._hits) < self.max_keys:
            return
        expired = [key for key, (_, reset_at) in self._hits.items() if now > reset_at]
        for key in expired:
            del self._hits[key]
        logger.debug("Purged %s expired rate limit windows", len(expired))

    def check(self, identifier: str, limit_type: str, now: Optional[float] = None) -> RateLimitResult:
        """Register a hit for ``identifier`` under policy ``limit_type``.

        Raises ``KeyError`` for unknown policies.
        """
        policy = self.policies.get(limit_type)
        if policy is None:
            raise KeyError(f"Unknown rate limit type: {limit_type}")
        now = time.time() if now is None else now
        key = f"{limit_type}_{identifier}"
        with self._lock:
            self._purge(now)
            entry = self._hits.get(key)
            if entry is None or now > entry[1]:
                reset_at = now + policy.window_seconds
                self._hits[key] = (1, reset_at)
                return RateLimitResult(True, policy.requests - 1, reset_at, policy.requests)
            count, reset_at = entry
            if count >= policy.requests:
                return RateLimitResult(False, 0, reset_at, policy.requests)
            count += 1
            self._hits[key] = (count, reset_at)
            return RateLimitResult(True, policy.requests - count, reset_at, policy.requests)

    def reset(self, identifier: str, limit_type: str) -> None:
        with self._lock:
            self._hits.pop(f"{limit_type}_{identifier}", None)

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        return len(self._hits)


limiter = RateLimiter()


def _identify(request: Request, current_user: Optional[Dict]) -> str:
    if current_user and current_user.get("user_id") is not None:
        return f"user:{current_user['user_id']}"
    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def rate_limit(limit_type: str):
    """Dependency factory enforcing the named rate-limit policy.

    Authenticated callers are identified by user id, anonymous ones by
    client address.  On rejection a 429 response is raised carrying
    ``Retry-After`` and ``X-RateLimit-*`` headers.
    """
    if limit_type not in POLICIES:
        raise KeyError(f"Unknown rate limit type: {limit_type}")

    def _dependency(request: Request, current_user: Optional[Dict] = Depends(get_optional_user)) -> None:
        if not settings.rate_limit_enabled:
            return
        identifier = _identify(request, current_user)
        result = limiter.check(identifier, limit_type)
        if not result.success:
            retry_after = max(1, math.ceil(result.reset - time.time()))
            logger.warning("Rate limit %s exceeded for %s", limit_type, identifier)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": str(result.remaining),
                    "X-RateLimit-Reset": str(int(result.reset)),
                },
            )

    return _dependency
