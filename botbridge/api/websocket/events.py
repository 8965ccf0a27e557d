"""WebSocket Events - Push channel for session events.

Clients connect to "/" (or "/ws") with a required sessionId query
parameter and receive JSON envelopes for that session:

    {"type": "connection", "status": "connected"}
    {"type": "qr", "data": "..."}
    {"type": "message", "data": {"from": "...", "text": "...", "timestamp": 0}}

A connection without sessionId is closed with code 1008. The current status
is pushed once on connect when the session exists.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from botbridge.api.auth import verify_websocket_key
from botbridge.config.constants import BRIDGE
from botbridge.config.settings import get_settings
from botbridge.observability.logging import get_logger
from botbridge.orchestrator.hub import get_hub

logger = get_logger(__name__)

router = APIRouter(tags=["events"])

SESSION_ID_PARAM = "sessionId"


class WebSocketSubscriber:
    """Subscriber channel backed by one WebSocket.

    Events are queued without blocking and written by a background task,
    so a slow client never holds up the publisher. When the queue is full
    new events are dropped.

    Usage:
        subscriber = WebSocketSubscriber(session_id, websocket)
        subscriber.start()
        hub.subscribe(session_id, subscriber)

        # ...

        hub.unsubscribe(session_id, subscriber)
        await subscriber.stop()
    """

    def __init__(
        self,
        session_id: str,
        websocket: WebSocket,
        queue_size: int = BRIDGE.SUBSCRIBER_QUEUE_SIZE,
    ) -> None:
        self._session_id = session_id
        self._websocket = websocket
        self._connected = False
        self._send_queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._send_task: asyncio.Task | None = None

    @property
    def session_id(self) -> str:
        """Session this channel observes."""
        return self._session_id

    @property
    def is_open(self) -> bool:
        """Whether the socket can still take events."""
        return (
            self._connected
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    def start(self) -> None:
        """Start the send task. The socket must already be accepted."""
        self._connected = True
        self._send_task = asyncio.create_task(self._send_loop())

    def offer(self, event: dict[str, Any]) -> bool:
        """Queue an event for sending.

        Returns:
            True if queued, False if closed or the queue is full
        """
        if not self._connected:
            return False

        try:
            self._send_queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.debug(
                "subscriber_event_dropped",
                session_id=self._session_id,
                event_type=event.get("type"),
            )
            return False

    async def stop(self) -> None:
        """Stop sending and close the socket if it is still open."""
        self._connected = False

        if self._send_task:
            self._send_task.cancel()
            try:
                await self._send_task
            except asyncio.CancelledError:
                pass

        if self._websocket.client_state == WebSocketState.CONNECTED:
            try:
                await self._websocket.close()
            except RuntimeError:
                # Already closed by the peer
                pass

    async def _send_loop(self) -> None:
        """Background loop to send queued events in order."""
        while self._connected:
            event = await self._send_queue.get()
            try:
                await self._websocket.send_json(event)
            except WebSocketDisconnect:
                self._connected = False
                break
            except Exception as e:
                logger.warning(
                    "subscriber_send_error",
                    session_id=self._session_id,
                    error=str(e),
                )
                self._connected = False
                break


async def _serve(websocket: WebSocket) -> None:
    await websocket.accept()

    session_id = websocket.query_params.get(SESSION_ID_PARAM)
    if not session_id:
        await websocket.close(code=BRIDGE.WS_POLICY_VIOLATION, reason="sessionId required")
        return

    rejection = verify_websocket_key(websocket)
    if rejection is not None:
        await websocket.close(code=BRIDGE.WS_POLICY_VIOLATION, reason=rejection)
        return

    hub = get_hub()
    subscriber = WebSocketSubscriber(
        session_id, websocket, queue_size=get_settings().subscriber_queue_size
    )
    subscriber.start()
    hub.subscribe(session_id, subscriber)

    try:
        # Inbound frames carry no meaning; reading detects the close
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        hub.unsubscribe(session_id, subscriber)
        await subscriber.stop()


@router.websocket("/")
async def events_root(websocket: WebSocket) -> None:
    """Push channel at the root path."""
    await _serve(websocket)


@router.websocket("/ws")
async def events_ws(websocket: WebSocket) -> None:
    """Push channel at /ws."""
    await _serve(websocket)
