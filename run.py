"""Entry point for serving the Loconomy API.

Launches the FastAPI application with Uvicorn.  It is intended to be
executed from the project root, for example under Docker or a process
manager where you only specify a single Python file to run.

Configuration (``DATABASE_URL``, ``SECRET_KEY``, Stripe and OpenAI keys
and so on) is read from environment variables; see
``loconomy_api/app/core/config.py`` for the full list.  Host and port
come from ``API_HOST`` and ``API_PORT`` (defaults ``0.0.0.0`` and
``8000``).

Usage:
    python run.py
"""
import asyncio
import logging
import os

from uvicorn import Config, Server

from loconomy_api.app.main import app


async def main() -> None:
    """Serve the API until interrupted."""
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    config = Config(app=app, host=host, port=port, reload=False, log_level="info")
    server = Server(config)
    logging.getLogger(__name__).info("Starting Loconomy API on %s:%s", host, port)
    await server.serve()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
