"""Tests for the protocol bridge transport.

The bridge socket is replaced by an in-memory fake that answers command
frames and lets tests push event frames.
"""

import asyncio
import json

import pytest

from botbridge.exceptions import TransportConnectError, TransportError
from botbridge.transport import bridge_transport
from botbridge.transport.base import (
    ConnectionCloseEvent,
    ConnectionOpenEvent,
    CredentialsUpdateEvent,
    InboundMessage,
    MessagesUpsertEvent,
    QRCodeEvent,
)
from botbridge.transport.bridge_transport import (
    BridgeTransport,
    parse_event_frame,
    parse_message,
)


class FakeBridgeSocket:
    """In-memory stand-in for the bridge WebSocket."""

    def __init__(self, replies=None):
        self.transport = None
        self.replies = replies or {}
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, data):
        frame = json.loads(data)
        self.sent.append(frame)
        reply = self.replies.get(frame["op"], {"ok": True})
        if reply is not None:
            asyncio.get_running_loop().call_soon(
                self.transport._dispatch, {"id": frame["id"], **reply}
            )

    def push(self, frame):
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self):
        self._incoming.put_nowait(None)

    async def close(self):
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


async def connected_transport(monkeypatch, replies=None, **kwargs):
    socket = FakeBridgeSocket(replies)
    calls = []

    async def fake_connect(url, **options):
        calls.append(url)
        return socket

    monkeypatch.setattr(bridge_transport.websockets, "connect", fake_connect)
    transport = BridgeTransport(
        "s1", "15551234567", {"me": {"id": "1"}}, url="ws://bridge:8765", **kwargs
    )
    socket.transport = transport
    await transport.connect()
    return transport, socket


async def next_event(transport):
    return await asyncio.wait_for(anext(transport.events()), timeout=1.0)


class TestParseMessage:
    """Tests for message object conversion."""

    def test_plain_conversation(self):
        message = parse_message({
            "key": {"remoteJid": "2@s.whatsapp.net", "fromMe": False, "id": "ABC"},
            "message": {"conversation": "hello"},
            "messageTimestamp": "1700000000",
        })
        assert message == InboundMessage(
            remote_jid="2@s.whatsapp.net",
            from_me=False,
            conversation="hello",
            extended_text=None,
            message_id="ABC",
            timestamp=1700000000,
        )

    def test_extended_text(self):
        message = parse_message({
            "key": {"remoteJid": "2@s.whatsapp.net", "fromMe": True},
            "message": {"extendedTextMessage": {"text": "quoted"}},
        })
        assert message.extended_text == "quoted"
        assert message.from_me is True
        assert message.timestamp is None

    def test_missing_jid(self):
        assert parse_message({"key": {}, "message": {"conversation": "x"}}) is None

    def test_no_content(self):
        message = parse_message({"key": {"remoteJid": "2@s.whatsapp.net"}})
        assert message.conversation is None
        assert message.extended_text is None


class TestParseEventFrame:
    """Tests for event frame translation."""

    def test_qr(self):
        assert parse_event_frame({"event": "connection.update", "qr": "2@abc"}) == [
            QRCodeEvent("2@abc")
        ]

    def test_qr_before_state(self):
        events = parse_event_frame(
            {"event": "connection.update", "qr": "2@abc", "connection": "open"}
        )
        assert events == [QRCodeEvent("2@abc"), ConnectionOpenEvent()]

    def test_close_with_status(self):
        events = parse_event_frame(
            {"event": "connection.update", "connection": "close", "statusCode": 401}
        )
        assert events == [ConnectionCloseEvent(reason=401)]
        assert events[0].is_logged_out

    def test_close_without_status(self):
        events = parse_event_frame({"event": "connection.update", "connection": "close"})
        assert events == [ConnectionCloseEvent(reason=None)]

    def test_connecting_ignored(self):
        assert parse_event_frame(
            {"event": "connection.update", "connection": "connecting"}
        ) == []

    def test_messages_upsert(self):
        events = parse_event_frame({
            "event": "messages.upsert",
            "type": "notify",
            "messages": [
                {"key": {"remoteJid": "2@s.whatsapp.net"}, "message": {"conversation": "a"}},
                {"key": {}},
            ],
        })
        assert len(events) == 1
        assert isinstance(events[0], MessagesUpsertEvent)
        assert events[0].kind == "notify"
        assert [m.conversation for m in events[0].messages] == ["a"]

    def test_creds_update(self):
        assert parse_event_frame({"event": "creds.update", "creds": {"k": 1}}) == [
            CredentialsUpdateEvent({"k": 1})
        ]

    def test_unknown(self):
        assert parse_event_frame({"event": "presence.update"}) == []


class TestBridgeTransport:
    """Tests for commands and the reader loop."""

    @pytest.mark.asyncio
    async def test_connect_starts_session(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch, browser_name="Forge")
        start = socket.sent[0]
        assert start["op"] == "start"
        assert start["sessionId"] == "s1"
        assert start["phoneNumber"] == "15551234567"
        assert start["credentials"] == {"me": {"id": "1"}}
        assert start["browser"][0] == "Forge"
        await transport.close()

    @pytest.mark.asyncio
    async def test_bridge_unreachable(self, monkeypatch):
        def refuse(url, **options):
            raise OSError("connection refused")

        monkeypatch.setattr(bridge_transport.websockets, "connect", refuse)
        transport = BridgeTransport("s1", "1", url="ws://bridge:8765")
        with pytest.raises(TransportConnectError, match="Bridge unreachable"):
            await transport.connect()

    @pytest.mark.asyncio
    async def test_pairing_code(self, monkeypatch):
        transport, socket = await connected_transport(
            monkeypatch,
            replies={"requestPairingCode": {"ok": True, "result": {"code": "ABCD1234"}}},
        )
        assert await transport.request_pairing_code("15551234567") == "ABCD1234"
        assert socket.sent[-1]["phoneNumber"] == "15551234567"
        await transport.close()

    @pytest.mark.asyncio
    async def test_pairing_code_missing(self, monkeypatch):
        transport, _ = await connected_transport(
            monkeypatch,
            replies={"requestPairingCode": {"ok": True, "result": {}}},
        )
        with pytest.raises(TransportError, match="no pairing code"):
            await transport.request_pairing_code("1")
        await transport.close()

    @pytest.mark.asyncio
    async def test_send(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch)
        await transport.send_text("2@s.whatsapp.net", "hi")
        assert socket.sent[-1]["op"] == "sendMessage"
        assert socket.sent[-1]["jid"] == "2@s.whatsapp.net"
        assert socket.sent[-1]["content"] == {"text": "hi"}
        await transport.close()

    @pytest.mark.asyncio
    async def test_rejected_command(self, monkeypatch):
        transport, _ = await connected_transport(
            monkeypatch,
            replies={"sendMessage": {"ok": False, "error": "not connected"}},
        )
        with pytest.raises(TransportError, match="not connected"):
            await transport.send_text("2@s.whatsapp.net", "hi")
        await transport.close()

    @pytest.mark.asyncio
    async def test_request_timeout(self, monkeypatch):
        transport, _ = await connected_transport(
            monkeypatch,
            replies={"logout": None},
            request_timeout_s=0.05,
        )
        with pytest.raises(TransportError, match="timed out"):
            await transport.logout()
        await transport.close()

    @pytest.mark.asyncio
    async def test_request_before_connect(self):
        transport = BridgeTransport("s1", "1")
        with pytest.raises(TransportError, match="not connected"):
            await transport.send_text("2@s.whatsapp.net", "hi")

    @pytest.mark.asyncio
    async def test_ready_frame(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch)
        socket.push({"event": "ready"})
        await asyncio.wait_for(transport.wait_until_ready(), timeout=1.0)
        await transport.close()

    @pytest.mark.asyncio
    async def test_qr_marks_ready(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch)
        socket.push({"event": "connection.update", "qr": "2@abc"})
        assert await next_event(transport) == QRCodeEvent("2@abc")
        assert transport.is_ready
        await transport.close()

    @pytest.mark.asyncio
    async def test_invalid_frame_skipped(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch)
        socket.push("not json")
        socket.push({"event": "connection.update", "connection": "open"})
        assert await next_event(transport) == ConnectionOpenEvent()
        await transport.close()

    @pytest.mark.asyncio
    async def test_socket_drop_reports_close(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch)
        socket.drop()
        assert await next_event(transport) == ConnectionCloseEvent(reason=None)
        await transport.close()

    @pytest.mark.asyncio
    async def test_close_is_silent(self, monkeypatch):
        transport, socket = await connected_transport(monkeypatch)
        await transport.close()
        assert socket.closed
        assert [event async for event in transport.events()] == []

    @pytest.mark.asyncio
    async def test_close_fails_pending(self, monkeypatch):
        transport, _ = await connected_transport(monkeypatch, replies={"logout": None})
        pending = asyncio.create_task(transport.logout())
        await asyncio.sleep(0.01)
        await transport.close()
        with pytest.raises(TransportError, match="Transport closed"):
            await pending
