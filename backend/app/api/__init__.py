"""API endpoints.

``app.api.routes`` is imported by the application factory only, since it
depends on the service container which itself uses the WebSocket manager.
"""

from app.api.websocket import ConnectionManager, WebSocketMessage, websocket_endpoint

__all__ = [
    "ConnectionManager",
    "WebSocketMessage",
    "websocket_endpoint",
]
