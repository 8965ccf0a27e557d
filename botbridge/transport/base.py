"""Transport Base Interface - Pluggable messaging network connection.

A transport owns one connection to the messaging network for one session.
Commands are awaited methods; everything the network reports back arrives
on a typed event stream consumed by the connection state machine.

Transport must support:
- connect / logout / close
- sending a text message to an address
- requesting a pairing code for a phone number
- an ordered event stream (lifecycle, messages, credentials)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, AsyncIterator, Protocol, Union


class DisconnectReason(IntEnum):
    """Status codes carried by a close event."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class QRCodeEvent:
    """Out-of-band authentication artifact (QR payload)."""

    data: str


@dataclass(frozen=True)
class ConnectionOpenEvent:
    """Transport authenticated and connected."""


@dataclass(frozen=True)
class ConnectionCloseEvent:
    """Transport disconnected, optionally with a reason code."""

    reason: int | None = None

    @property
    def is_logged_out(self) -> bool:
        """Whether the remote party ended the session."""
        return self.reason == DisconnectReason.LOGGED_OUT


@dataclass(frozen=True)
class InboundMessage:
    """A message received from the network."""

    remote_jid: str
    from_me: bool = False
    conversation: str | None = None  # Plain text body
    extended_text: str | None = None  # Extended/quoted text body
    message_id: str | None = None
    timestamp: int | None = None  # Seconds since epoch, as reported by the network


@dataclass(frozen=True)
class MessagesUpsertEvent:
    """Batch of new messages.

    kind is "notify" for live messages and "append" for history backfill.
    """

    messages: tuple[InboundMessage, ...] = ()
    kind: str = "notify"


@dataclass(frozen=True)
class CredentialsUpdateEvent:
    """Updated authentication material to persist."""

    credentials: dict[str, Any] = field(default_factory=dict)


TransportEvent = Union[
    QRCodeEvent,
    ConnectionOpenEvent,
    ConnectionCloseEvent,
    MessagesUpsertEvent,
    CredentialsUpdateEvent,
]


class Transport(Protocol):
    """Protocol for pluggable messaging transports.

    Usage:
        transport = create_transport(session_id, phone_number, credentials)
        consumer = asyncio.create_task(machine.run(transport.events()))
        await transport.connect()

        code = await transport.request_pairing_code(phone_number)
        await transport.send_text("15551234567@s.whatsapp.net", "hi")

        await transport.logout()
        await transport.close()
    """

    supports_ready_signal: bool

    async def connect(self) -> None:
        """Open the connection to the network."""
        ...

    async def send_text(self, jid: str, text: str) -> None:
        """Send a text message to a full address."""
        ...

    async def request_pairing_code(self, phone_number: str) -> str:
        """Request a one-time pairing code for a digits-only phone number."""
        ...

    async def logout(self) -> None:
        """Unlink this device from the account."""
        ...

    async def close(self) -> None:
        """Drop the connection without logging out."""
        ...

    def events(self) -> AsyncIterator[TransportEvent]:
        """Ordered stream of transport events."""
        ...

    async def wait_until_ready(self) -> None:
        """Return once the transport can accept a pairing request."""
        ...


class BaseTransport(ABC):
    """Base class for transport implementations.

    Provides the event queue, the readiness signal and close bookkeeping.
    Concrete implementations push events with emit() and implement the
    command methods.
    """

    supports_ready_signal: bool = False

    def __init__(
        self,
        session_id: str,
        phone_number: str,
        credentials: dict[str, Any] | None = None,
    ) -> None:
        self._session_id = session_id
        self._phone_number = phone_number
        self._credentials = credentials
        self._events: asyncio.Queue[TransportEvent | None] = asyncio.Queue()
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def session_id(self) -> str:
        """Session this transport belongs to."""
        return self._session_id

    @property
    def phone_number(self) -> str:
        """Digits-only phone number of the account."""
        return self._phone_number

    @property
    def is_closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    @property
    def is_ready(self) -> bool:
        """Whether the readiness signal has fired."""
        return self._ready.is_set()

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection to the network."""
        ...

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> None:
        """Send a text message to a full address."""
        ...

    @abstractmethod
    async def request_pairing_code(self, phone_number: str) -> str:
        """Request a one-time pairing code."""
        ...

    @abstractmethod
    async def logout(self) -> None:
        """Unlink this device from the account."""
        ...

    async def close(self) -> None:
        """Drop the connection and end the event stream.

        Idempotent. Subclasses should release their resources and then
        call super().close().
        """
        if self._closed:
            return
        self._closed = True
        self._events.put_nowait(None)

    def emit(self, event: TransportEvent) -> bool:
        """Queue an event for the consumer.

        Returns:
            False if the transport is already closed
        """
        if self._closed:
            return False
        self._events.put_nowait(event)
        return True

    def mark_ready(self) -> None:
        """Fire the readiness signal."""
        self._ready.set()

    async def wait_until_ready(self) -> None:
        """Return once the readiness signal has fired."""
        await self._ready.wait()

    async def events(self) -> AsyncIterator[TransportEvent]:
        """Yield queued events in order until close()."""
        while True:
            event = await self._events.get()
            try:
                if event is None:
                    return
                yield event
            finally:
                self._events.task_done()

    async def wait_drained(self) -> None:
        """Wait until every emitted event has been fully handled.

        An event counts as handled once the consumer asks for the next one.
        """
        await self._events.join()
