"""FastAPI application entry point for the session processing orchestrator.

This module builds the FastAPI application, wires the orchestrator to its
collaborators and the global event bus, and manages startup/shutdown.

The concrete content/metrics/AI/remote-sync collaborators live outside this
service. Either pass them to ``create_app`` or point
``COLLABORATORS_FACTORY`` at a ``module:function`` returning them.

Usage:
    COLLABORATORS_FACTORY=myapp.wiring:build uv run uvicorn main:create_app --factory
"""

import importlib
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_orchestrator
from api.websocket import websocket_router
from config import configure_logging, settings
from events import get_event_bus
from models.database import SessionStore
from orchestrator import Orchestrator
from processing.collaborators import Collaborators

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


def load_collaborators_factory(path: str) -> Callable[[SessionStore], Collaborators]:
    """Resolve a ``module:function`` reference to a collaborators factory.

    The factory is called with the initialized SessionStore.

    Raises:
        RuntimeError: If ``path`` is empty or malformed.
    """
    if not path:
        raise RuntimeError(
            "No collaborators configured. Pass collaborators to create_app() "
            "or set COLLABORATORS_FACTORY=module:function."
        )
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise RuntimeError(f"Invalid COLLABORATORS_FACTORY '{path}', expected module:function")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def create_app(collaborators: Collaborators | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        collaborators: Collaborators to drive. When None they are built at
            startup from ``settings.collaborators_factory``.

    Returns:
        The configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager for startup and shutdown events."""
        logger.info(
            "application_starting",
            backend_port=settings.backend_port,
            log_level=settings.log_level,
            debounce_seconds=settings.core_metrics_debounce_seconds,
        )

        event_bus = get_event_bus()

        resolved = collaborators
        if resolved is None:
            store = SessionStore(settings.database_path)
            await store.init()
            factory = load_collaborators_factory(settings.collaborators_factory)
            resolved = factory(store)

        orchestrator = Orchestrator(resolved, event_bus, settings)
        await orchestrator.start()

        set_orchestrator(orchestrator)
        app.state.orchestrator = orchestrator

        logger.info("application_started")

        yield

        logger.info("application_shutting_down")
        await orchestrator.stop()
        set_orchestrator(None)
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Session Processing Orchestrator",
        description="Schedules, deduplicates, sequences and tracks processing "
        "of locally detected agent sessions.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, tags=["orchestrator"])
    app.include_router(websocket_router, tags=["websocket"])

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "message": "Session Processing Orchestrator API",
            "docs": "/docs",
            "health": "/health",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.backend_port,
        log_level=settings.log_level.lower(),
    )
