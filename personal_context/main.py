"""
Personal context server: encrypted personal-data store behind a tool-call API.

create_app builds the process-wide EntityStore and AuthGate from explicit
Settings (startup aborts if secrets are missing or invalid), closes the store
exactly once on shutdown, adds a global exception handler and /health.

run() is the console entry point: loads .env in development only (production
uses env vars directly), configures logging and serves with uvicorn, which
turns SIGINT/SIGTERM into a clean lifespan shutdown.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from personal_context import __version__
from personal_context.config import Settings, load_settings
from personal_context.security import AuthGate
from personal_context.services.entity_store import EntityStore
from personal_context.tools import router as tools_router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    if settings is None:
        settings = load_settings()

    store = EntityStore(settings.store)
    gate = AuthGate(settings.auth)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.store.close()

    app = FastAPI(
        title="Personal Context",
        description="Tool-call API over an encrypted store of users, contacts, emails, calendar items and OAuth tokens.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.gate = gate

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
        logging.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(tools_router)
    return app


def run() -> None:
    """Console entry point for personal-context-server."""
    # Load .env only in development; production should set env vars directly
    if os.getenv("ENV", "development").lower() == "development":
        load_dotenv(Path.cwd() / ".env")

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Serving personal context on %s:%s", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
