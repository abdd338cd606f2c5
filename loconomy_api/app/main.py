"""
Main entrypoint for the Loconomy API.

``create_app`` configures logging, CORS for the web front end and the
versioned routers; the module-level ``app`` is what uvicorn serves::

    uvicorn loconomy_api.app.main:app --reload

The database schema is created (or migrated) on startup, so a fresh
``DATABASE_URL`` works without a separate setup step.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.router import router as v1_router
from .core.config import settings
from .core.db import get_database_path, init_db
from .core.logging_config import setup_logging


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the FastAPI application with every v1 route under ``/api/v1``."""
    setup_logging(settings.log_level, settings.log_file or None)

    app = FastAPI(title=settings.project_name, version=settings.api_version, debug=settings.debug)

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        )

    app.include_router(v1_router, prefix="/api/v1")

    @app.on_event("startup")
    async def startup_event() -> None:
        init_db()
        logger.info("%s %s ready (database %s)", settings.project_name, settings.api_version, get_database_path())

    return app


app = create_app()
