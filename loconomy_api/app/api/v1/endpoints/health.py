"""
Liveness probe.
"""

from fastapi import APIRouter

from loconomy_api.app.core.config import settings


router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": settings.api_version}
