"""
Domain exceptions raised by the service layer.

All of them derive from ``ValueError`` so that callers which only care
about "the operation was rejected" can keep catching ``ValueError``.
Endpoints map the subclasses to HTTP status codes via
:func:`to_http_exception`.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class NotFoundError(ValueError):
    """The requested object does not exist."""


class PermissionDeniedError(ValueError):
    """The caller is authenticated but not allowed to do this."""


class ConflictError(ValueError):
    """The request collides with existing state (duplicates, invalid transitions)."""


class LimitExceededError(ValueError):
    """A subscription plan limit would be exceeded."""


class IntegrationError(ValueError):
    """An external service (Stripe, the LLM backend) is unavailable or misconfigured."""

    def __init__(self, message: str, upstream: bool = False) -> None:
        super().__init__(message)
        # ``upstream`` distinguishes "the remote call failed" (502) from
        # "the integration is not configured" (503).
        self.upstream = upstream


class BookingConflictError(ConflictError):
    """A booking request cannot be placed at the requested time."""

    def __init__(
        self,
        conflict_type: str,
        message: str,
        suggested_times: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.conflict_type = conflict_type
        self.suggested_times = suggested_times or []

    def as_detail(self) -> Dict[str, Any]:
        return {
            "type": self.conflict_type,
            "message": str(self),
            "suggested_times": self.suggested_times,
        }


def to_http_exception(exc: ValueError) -> HTTPException:
    """Translate a domain error into an ``HTTPException``."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, BookingConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.as_detail())
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, LimitExceededError):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc))
    if isinstance(exc, IntegrationError):
        code = status.HTTP_502_BAD_GATEWAY if exc.upstream else status.HTTP_503_SERVICE_UNAVAILABLE
        return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
