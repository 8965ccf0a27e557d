"""WebSocket API package."""

from botbridge.api.websocket.events import WebSocketSubscriber, router

__all__ = [
    "WebSocketSubscriber",
    "router",
]
