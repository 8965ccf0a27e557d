"""Session Hub - Entry point for the route layer.

Wires one Broadcaster, one SessionRegistry and one PairingFlow around the
credential store and the transport factory, and exposes the operations
the HTTP routes and the push channel need.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

from botbridge.config.constants import BRIDGE
from botbridge.config.settings import Settings, get_settings
from botbridge.exceptions import (
    MessageSendError,
    SessionNotConnectedError,
    SessionNotFoundError,
    ValidationError,
)
from botbridge.observability.logging import get_logger
from botbridge.observability.metrics import record_error
from botbridge.orchestrator.broadcaster import Broadcaster, SubscriberChannel
from botbridge.orchestrator.pairing import PairingFlow, PairingResult
from botbridge.orchestrator.registry import SessionRegistry
from botbridge.orchestrator.status import SessionStatus
from botbridge.storage.credentials import CredentialStore
from botbridge.transport.factory import TransportFactory, transport_factory_from_settings
from botbridge.utils.backoff import ReconnectPolicy

logger = get_logger(__name__)


def to_jid(recipient: str, domain: str = BRIDGE.DEFAULT_USER_DOMAIN) -> str:
    """Full address for a recipient: kept verbatim if it has a domain."""
    if "@" in recipient:
        return recipient
    return f"{recipient}@{domain}"


class SessionHub:
    """Coordinates sessions, pairing and subscribers.

    Usage:
        hub = SessionHub.from_settings(get_settings())

        result = await hub.pair("s1", "+1 555 123 4567")
        hub.status("s1")             # SessionStatus.CONNECTING
        await hub.send_message("s1", "15559876543", "hi")
        await hub.shutdown()
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        credential_store: CredentialStore | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
        connect_timeout_s: float | None = None,
        pairing_settle_s: float = BRIDGE.PAIRING_SETTLE_S,
        pairing_ready_timeout_s: float = BRIDGE.PAIRING_READY_TIMEOUT_S,
        default_user_domain: str = BRIDGE.DEFAULT_USER_DOMAIN,
    ) -> None:
        self.broadcaster = Broadcaster()
        self.credential_store = credential_store
        self.registry = SessionRegistry(
            transport_factory,
            self.broadcaster,
            credential_store=credential_store,
            reconnect_policy=reconnect_policy,
            connect_timeout_s=connect_timeout_s,
        )
        self.broadcaster.set_status_lookup(self.registry.current_status)
        self.pairing = PairingFlow(
            self.registry,
            settle_s=pairing_settle_s,
            ready_timeout_s=pairing_ready_timeout_s,
        )
        self._default_user_domain = default_user_domain
        self._started_at = time.monotonic()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SessionHub:
        """Build a hub from application settings."""
        settings = settings or get_settings()
        return cls(
            transport_factory=transport_factory_from_settings(settings),
            credential_store=CredentialStore(Path(settings.sessions_dir)),
            reconnect_policy=ReconnectPolicy.from_settings(settings),
            connect_timeout_s=settings.transport_connect_timeout_s,
            pairing_settle_s=settings.pairing_settle_s,
            pairing_ready_timeout_s=settings.pairing_ready_timeout_s,
            default_user_domain=settings.default_user_domain,
        )

    @property
    def uptime_s(self) -> float:
        """Seconds since the hub was created."""
        return time.monotonic() - self._started_at

    async def pair(self, session_id: str, phone_number: str) -> PairingResult:
        """Start (or restart) a session and return its pairing code."""
        return await self.pairing.request_pairing(session_id, phone_number)

    def status(self, session_id: str) -> SessionStatus:
        """Current status, NOT_FOUND for unknown ids."""
        return self.registry.status(session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        """Public view of every registered session."""
        sessions = []
        for session_id in self.registry.list_sessions():
            entry = self.registry.get(session_id)
            if entry is not None:
                sessions.append(entry.to_dict())
        return sessions

    def session_info(self, session_id: str) -> dict[str, Any]:
        """Public view of one registered session.

        Raises:
            SessionNotFoundError: If the id is not registered
        """
        entry = self.registry.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry.to_dict()

    async def send_message(self, session_id: str, to: str, text: str) -> str:
        """Send a text message through a connected session.

        Returns:
            The full recipient address used

        Raises:
            ValidationError: If the recipient or the text is empty
            SessionNotConnectedError: If the session is absent or not connected
            MessageSendError: If the transport rejects the message
        """
        entry = self.registry.get(session_id)
        if entry is None or entry.status is not SessionStatus.CONNECTED:
            status = entry.status.value if entry else SessionStatus.NOT_FOUND.value
            raise SessionNotConnectedError(session_id, status=status)

        if not to or not text:
            raise ValidationError("to and message required")

        jid = to_jid(to, self._default_user_domain)
        try:
            await entry.transport.send_text(jid, text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            record_error("transport", "send")
            logger.warning(
                "message_send_failed",
                session_id=session_id,
                error=str(e),
            )
            raise MessageSendError(session_id, jid, str(e) or type(e).__name__) from e

        logger.info("message_sent", session_id=session_id, text_length=len(text))
        return jid

    async def disconnect(self, session_id: str) -> bool:
        """Log out and remove a session. Unknown ids are a no-op."""
        return await self.registry.disconnect(session_id)

    def subscribe(self, session_id: str, channel: SubscriberChannel) -> bool:
        """Attach a push channel to a session id."""
        return self.broadcaster.subscribe(session_id, channel)

    def unsubscribe(self, session_id: str, channel: SubscriberChannel) -> bool:
        """Detach a push channel."""
        return self.broadcaster.unsubscribe(session_id, channel)

    def health(self) -> dict[str, Any]:
        """Liveness summary."""
        return {
            "status": "ok",
            "activeSessions": self.registry.active_count,
            "uptime": round(self.uptime_s, 3),
        }

    async def shutdown(self) -> int:
        """Close every transport. Stored credentials are kept."""
        closed = await self.registry.close_all()
        logger.info("hub_shutdown", sessions_closed=closed)
        return closed


# Global hub (initialized on startup)
_hub: SessionHub | None = None


def get_hub() -> SessionHub:
    """Get global session hub."""
    global _hub
    if _hub is None:
        _hub = SessionHub.from_settings(get_settings())
    return _hub


def set_hub(hub: SessionHub | None) -> None:
    """Replace the global session hub (startup and tests)."""
    global _hub
    _hub = hub
