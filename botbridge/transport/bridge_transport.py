"""Bridge Transport - Messaging network access through a protocol bridge.

The wire protocol, encryption and multi-device sync live in a bridge
process. This transport talks to it over a WebSocket carrying JSON frames:

Commands (client -> bridge), answered by a frame with the same "id":
    {"id": 1, "op": "start", "sessionId": ..., "phoneNumber": ..., "credentials": ..., "browser": [...]}
    {"id": 2, "op": "requestPairingCode", "phoneNumber": ...}
    {"id": 3, "op": "sendMessage", "jid": ..., "content": {"text": ...}}
    {"id": 4, "op": "logout"}

Replies:
    {"id": 2, "ok": true, "result": {"code": "ABCD1234"}}
    {"id": 3, "ok": false, "error": "not connected"}

Events (bridge -> client):
    {"event": "ready"}
    {"event": "connection.update", "qr": ..., "connection": "open" | "close", "statusCode": 401}
    {"event": "messages.upsert", "type": "notify", "messages": [...]}
    {"event": "creds.update", "creds": {...}}
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from botbridge.exceptions import TransportConnectError, TransportError
from botbridge.observability.logging import get_logger
from botbridge.transport.base import (
    BaseTransport,
    ConnectionCloseEvent,
    ConnectionOpenEvent,
    CredentialsUpdateEvent,
    InboundMessage,
    MessagesUpsertEvent,
    QRCodeEvent,
    TransportEvent,
)
from botbridge.utils.async_timeout import AsyncTimeoutError, with_timeout

logger = get_logger(__name__)

REQUEST_TIMEOUT_S = 30.0


def parse_message(raw: dict[str, Any]) -> InboundMessage | None:
    """Convert a bridge message object into an InboundMessage."""
    key = raw.get("key") or {}
    remote_jid = key.get("remoteJid")
    if not remote_jid:
        return None

    content = raw.get("message") or {}
    extended = content.get("extendedTextMessage") or {}
    timestamp = raw.get("messageTimestamp")

    return InboundMessage(
        remote_jid=remote_jid,
        from_me=bool(key.get("fromMe", False)),
        conversation=content.get("conversation"),
        extended_text=extended.get("text"),
        message_id=key.get("id"),
        timestamp=int(timestamp) if timestamp is not None else None,
    )


def parse_event_frame(frame: dict[str, Any]) -> list[TransportEvent]:
    """Translate one bridge event frame into transport events.

    A connection update may carry both a QR payload and a state change;
    the QR event comes first. Unknown frames yield nothing.
    """
    kind = frame.get("event")
    events: list[TransportEvent] = []

    if kind == "connection.update":
        if frame.get("qr"):
            events.append(QRCodeEvent(data=str(frame["qr"])))
        connection = frame.get("connection")
        if connection == "open":
            events.append(ConnectionOpenEvent())
        elif connection == "close":
            status_code = frame.get("statusCode")
            events.append(
                ConnectionCloseEvent(
                    reason=int(status_code) if status_code is not None else None
                )
            )

    elif kind == "messages.upsert":
        messages = tuple(
            message
            for message in (parse_message(raw) for raw in frame.get("messages") or [])
            if message is not None
        )
        events.append(MessagesUpsertEvent(messages=messages, kind=frame.get("type", "")))

    elif kind == "creds.update":
        events.append(CredentialsUpdateEvent(credentials=frame.get("creds") or {}))

    return events


class BridgeTransport(BaseTransport):
    """Transport backed by a protocol bridge over WebSocket.

    Usage:
        transport = BridgeTransport(
            "s1", "15551234567", credentials,
            url="ws://localhost:8765",
        )
        await transport.connect()
    """

    supports_ready_signal = True

    def __init__(
        self,
        session_id: str,
        phone_number: str,
        credentials: dict[str, Any] | None = None,
        url: str = "ws://localhost:8765",
        connect_timeout_s: float = 60.0,
        browser_name: str = "BotForge",
        request_timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> None:
        super().__init__(session_id, phone_number, credentials)
        self._url = url
        self._connect_timeout_s = connect_timeout_s
        self._browser = [browser_name, "Chrome", "120.0.0"]
        self._request_timeout_s = request_timeout_s

        self._ws = None
        self._reader_task: asyncio.Task | None = None
        self._request_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._closing = False

    async def connect(self) -> None:
        """Open the bridge socket and start the session on it."""
        try:
            self._ws = await with_timeout(
                websockets.connect(self._url, ping_interval=30, ping_timeout=10),
                timeout_s=self._connect_timeout_s,
                operation="bridge connect",
            )
        except (OSError, WebSocketException, AsyncTimeoutError) as e:
            raise TransportConnectError(self._session_id, f"Bridge unreachable: {e}") from e

        self._reader_task = asyncio.create_task(self._read_loop())

        await self._request(
            "start",
            sessionId=self._session_id,
            phoneNumber=self._phone_number,
            credentials=self._credentials,
            browser=self._browser,
        )

    async def send_text(self, jid: str, text: str) -> None:
        await self._request("sendMessage", jid=jid, content={"text": text})

    async def request_pairing_code(self, phone_number: str) -> str:
        result = await self._request("requestPairingCode", phoneNumber=phone_number)
        if isinstance(result, dict):
            result = result.get("code")
        if not result:
            raise TransportError("Bridge returned no pairing code")
        return str(result)

    async def logout(self) -> None:
        await self._request("logout")

    async def close(self) -> None:
        if self.is_closed:
            return
        self._closing = True

        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(
                    "bridge_close_error",
                    session_id=self._session_id,
                    error=str(e),
                )
            self._ws = None

        self._fail_pending(TransportError("Transport closed"))
        await super().close()

    async def _request(self, op: str, **params: Any) -> Any:
        """Send a command frame and wait for its reply."""
        if self._ws is None or self.is_closed:
            raise TransportError(f"Cannot {op}: transport not connected")

        request_id = next(self._request_ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._ws.send(json.dumps({"id": request_id, "op": op, **params}))
            reply = await with_timeout(
                future,
                timeout_s=self._request_timeout_s,
                operation=f"bridge {op}",
            )
        except ConnectionClosed as e:
            raise TransportError(f"Bridge connection closed during {op}") from e
        except AsyncTimeoutError as e:
            raise TransportError(e.message) from e
        finally:
            self._pending.pop(request_id, None)

        if not reply.get("ok", False):
            raise TransportError(str(reply.get("error") or f"Bridge rejected {op}"))
        return reply.get("result")

    async def _read_loop(self) -> None:
        """Dispatch replies and events until the bridge socket closes."""
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("bridge_frame_invalid", session_id=self._session_id)
                    continue
                self._dispatch(frame)
        except ConnectionClosed as e:
            logger.info(
                "bridge_connection_closed",
                session_id=self._session_id,
                code=getattr(e, "code", None),
            )
        finally:
            self._fail_pending(TransportError("Bridge connection lost"))
            if not (self.is_closed or self._closing):
                # Socket dropped underneath us: report a non-terminal close
                self.emit(ConnectionCloseEvent(reason=None))

    def _dispatch(self, frame: dict[str, Any]) -> None:
        request_id = frame.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is not None and not future.done():
                future.set_result(frame)
            return

        if frame.get("event") == "ready":
            self.mark_ready()
            return

        for event in parse_event_frame(frame):
            if isinstance(event, QRCodeEvent):
                # Emitting an artifact means the socket accepts auth requests
                self.mark_ready()
            self.emit(event)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
