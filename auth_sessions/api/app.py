"""
Session Service Application

FastAPI application exposing the session manager over HTTP.
This is the main entry point for running the service.

Storage is configured via environment variables:
- SESSIONS_STORAGE_BACKEND: "memory", "sqlite", "postgresql", "redis"
- SESSIONS_DATABASE_URL: SQLAlchemy async connection URL
- SESSIONS_REDIS_URL: Redis URL for the redis backend

Event publishing:
- SESSIONS_EVENT_BACKEND: "memory" or "redis"
- SESSIONS_EVENT_REDIS_URL: Redis URL for pub/sub (defaults to SESSIONS_REDIS_URL)

Manager behaviour is configured with the SESSIONS_* variables documented in
auth_sessions.config.

Environment variables can be loaded from a .env file in the project root.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

import uvicorn
from dotenv import load_dotenv
from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

from auth_sessions import __version__
from auth_sessions.config import session_settings_from_env
from auth_sessions.events.factory import create_event_publisher, event_settings_from_env
from auth_sessions.session import (
    ConcurrentModificationError,
    DeviceConflictError,
    DuplicateViewError,
    PersistenceError,
    PersistenceTimeoutError,
    Session,
    SessionManager,
    SessionNotFoundError,
    View,
    utcnow,
)
from auth_sessions.storage import create_storage_from_env

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class PurgeRequest(BaseModel):
    """Purge parameters; the configured idle timeout applies when both are absent."""
    idle_seconds: float | None = Field(
        default=None,
        ge=0,
        description="Purge sessions idle for longer than this"
    )
    before: datetime | None = Field(
        default=None,
        description="Purge sessions last active before this instant"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds storage, event publisher and session manager from the environment
    unless a manager was injected.
    """
    if getattr(app.state, "manager", None) is not None:
        yield
        return

    logger.info("Starting session service...")

    storage = await create_storage_from_env()
    logger.info(f"Storage initialized: {type(storage.documents).__name__}")

    events = create_event_publisher(event_settings_from_env())
    logger.info(f"Event publisher initialized: {type(events).__name__}")

    manager = SessionManager(
        store=storage.documents,
        events=events,
        settings=session_settings_from_env(),
    )
    await manager.start()
    app.state.manager = manager

    logger.info("Session service started")

    yield

    # Shutdown
    logger.info("Shutting down session service...")
    await manager.stop()
    await events.close()
    await storage.close()
    app.state.manager = None
    logger.info("Session service stopped")


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": str(exc)},
    )


def create_app(manager: SessionManager | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        manager: Preconfigured manager (tests); built from env when omitted

    Returns:
        Configured application
    """
    app = FastAPI(
        title="Auth Sessions",
        description="Multi-device login sessions with views, data and idle purge",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.manager = manager

    def get_manager(request: Request) -> SessionManager:
        return request.app.state.manager

    # =========================================================================
    # Error Handlers
    # =========================================================================

    @app.exception_handler(SessionNotFoundError)
    async def not_found_handler(request: Request, exc: SessionNotFoundError):
        return _error(404, "session_not_found", exc)

    @app.exception_handler(DeviceConflictError)
    async def device_conflict_handler(request: Request, exc: DeviceConflictError):
        return _error(409, "device_conflict", exc)

    @app.exception_handler(DuplicateViewError)
    async def duplicate_view_handler(request: Request, exc: DuplicateViewError):
        return _error(409, "duplicate_view", exc)

    @app.exception_handler(ConcurrentModificationError)
    async def concurrent_modification_handler(request: Request, exc: ConcurrentModificationError):
        return _error(409, "concurrent_modification", exc)

    @app.exception_handler(PersistenceTimeoutError)
    async def timeout_handler(request: Request, exc: PersistenceTimeoutError):
        logger.warning(f"Persistence timeout: {request.method} {request.url.path} - {exc}")
        return _error(504, "persistence_timeout", exc)

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence error: {request.method} {request.url.path} - {exc}")
        return _error(503, "persistence_error", exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(422, "invalid_request", exc)

    # =========================================================================
    # Sessions
    # =========================================================================

    @app.post("/sessions", status_code=201)
    async def create_session(request: Request) -> dict[str, Any]:
        session = await get_manager(request).create_session()
        return session.to_document()

    @app.post("/sessions/purge")
    async def purge_sessions(
        request: Request,
        purge: PurgeRequest | None = None,
    ) -> dict[str, int]:
        """Expire idle sessions, publishing an offline event per removed view."""
        manager = get_manager(request)
        purge = purge or PurgeRequest()
        if purge.before is not None:
            cutoff = purge.before
        else:
            idle = purge.idle_seconds
            if idle is None:
                idle = manager.settings.session_idle_timeout_seconds
            cutoff = utcnow() - timedelta(seconds=idle)
        return {"purged": await manager.purge_old_sessions(cutoff)}

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str, request: Request) -> dict[str, Any]:
        session = await get_manager(request).get_session(session_id)
        return session.to_document()

    @app.put("/sessions/{session_id}")
    async def store_session(
        session_id: str,
        session: Session,
        request: Request,
    ) -> dict[str, Any]:
        session.id = session_id
        stored = await get_manager(request).store_session(session)
        return stored.to_document()

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str, request: Request) -> dict[str, int]:
        return {"deleted": await get_manager(request).delete_session(session_id)}

    @app.get("/users/{user_id}/session")
    async def get_session_for_user(user_id: str, request: Request) -> dict[str, Any]:
        session = await get_manager(request).get_session_for_user(user_id)
        return session.to_document()

    # =========================================================================
    # Views
    # =========================================================================

    @app.post("/sessions/{session_id}/views", status_code=201)
    async def register_view(
        session_id: str,
        view: View,
        request: Request,
    ) -> dict[str, Any]:
        session = await get_manager(request).register_view(session_id, view)
        return session.to_document()

    @app.delete("/sessions/{session_id}/views/{view_id}")
    async def remove_view(
        session_id: str,
        view_id: str,
        request: Request,
    ) -> dict[str, Any]:
        session = await get_manager(request).remove_view(session_id, view_id)
        return session.to_document()

    # =========================================================================
    # Session data
    # =========================================================================

    @app.put("/sessions/{session_id}/data")
    async def store_data(
        session_id: str,
        request: Request,
        fields: dict[str, Any] = Body(...),
    ) -> dict[str, Any]:
        await get_manager(request).store_data(session_id, fields)
        return {"stored": sorted(fields)}

    @app.get("/sessions/{session_id}/data")
    async def get_data(
        session_id: str,
        request: Request,
        fields: list[str] = Query(default=[]),
    ) -> dict[str, Any]:
        return await get_manager(request).get_data(session_id, fields)

    @app.delete("/sessions/{session_id}/data")
    async def delete_data(
        session_id: str,
        request: Request,
        fields: list[str] = Query(default=[]),
    ) -> dict[str, Any]:
        await get_manager(request).delete_data(session_id, fields)
        return {"deleted": fields}

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        manager = get_manager(request)
        return {
            "status": "healthy" if manager is not None else "starting",
            "version": __version__,
        }

    return app


app = create_app()


def main() -> None:
    """Run the service with uvicorn."""
    uvicorn.run(
        "auth_sessions.api.app:app",
        host=os.getenv("SESSIONS_HOST", "0.0.0.0"),
        port=int(os.getenv("SESSIONS_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
