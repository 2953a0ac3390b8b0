"""API module for HTTP routes and WebSocket handlers.

This module exposes the FastAPI routers for the orchestrator service.
"""

from api.routes import get_orchestrator, router, set_orchestrator
from api.websocket import websocket_router

__all__ = ["get_orchestrator", "router", "set_orchestrator", "websocket_router"]
