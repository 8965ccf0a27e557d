"""Connection State Machine - Interprets transport events for one handle.

One machine exists per transport handle (per registry generation). It
consumes the transport's event stream in order and:
- publishes QR artifacts, connection changes and inbound messages
- keeps the registry status in sync
- asks the registry to reconnect after a non-terminal close
- removes the session after a remote logout
- persists credential updates

Each event is handled inside its own error boundary so one failure never
stops the consumer, and events for a superseded generation are discarded.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import TYPE_CHECKING, AsyncIterator

from botbridge.config.constants import BRIDGE
from botbridge.exceptions import SessionStateError
from botbridge.observability.logging import SessionLogger
from botbridge.observability.metrics import (
    record_command_ack,
    record_error,
    record_message_received,
    record_state_change,
)
from botbridge.orchestrator.broadcaster import (
    Broadcaster,
    connection_event,
    message_event,
    qr_event,
)
from botbridge.orchestrator.status import (
    VALID_TRANSITIONS,
    SessionStatus,
    StateTransition,
)
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

if TYPE_CHECKING:
    from botbridge.orchestrator.registry import SessionRegistry
    from botbridge.storage.credentials import CredentialStore

_WHITESPACE = re.compile(r"\s")


def extract_text(message: InboundMessage) -> str:
    """Best-effort plain text of a message.

    First non-empty of the direct body and the extended body, else "".
    """
    return message.conversation or message.extended_text or ""


def parse_command(text: str, sigil: str = BRIDGE.COMMAND_SIGIL) -> str | None:
    """Command name of a sigil-prefixed text, lowercased.

    Returns:
        The first whitespace-delimited token after the sigil (possibly
        empty), or None if the text is not a command
    """
    if not text.startswith(sigil):
        return None
    return _WHITESPACE.split(text[len(sigil):], maxsplit=1)[0].lower()


def command_ack_text(command: str) -> str:
    """Acknowledgement sent back for a received command."""
    return f"Command received: /{command}"


class ConnectionStateMachine:
    """Connection FSM for one transport handle.

    Usage:
        machine = ConnectionStateMachine(
            session_id="s1",
            generation=3,
            transport=transport,
            registry=registry,
            broadcaster=broadcaster,
        )
        consumer = asyncio.create_task(machine.run(transport.events()))
    """

    def __init__(
        self,
        session_id: str,
        generation: int,
        transport: BaseTransport,
        registry: SessionRegistry,
        broadcaster: Broadcaster,
        credential_store: CredentialStore | None = None,
        max_history: int = BRIDGE.MAX_TRANSITION_HISTORY,
    ) -> None:
        self._session_id = session_id
        self._generation = generation
        self._transport = transport
        self._registry = registry
        self._broadcaster = broadcaster
        self._credential_store = credential_store
        self._state = SessionStatus.CONNECTING
        self._logger = SessionLogger(session_id, generation)

        self._history: list[StateTransition] = []
        self._max_history = max_history

    @property
    def state(self) -> SessionStatus:
        """Current state of this handle."""
        return self._state

    @property
    def session_id(self) -> str:
        """Session identifier."""
        return self._session_id

    @property
    def generation(self) -> int:
        """Registry generation this machine belongs to."""
        return self._generation

    @property
    def history(self) -> list[StateTransition]:
        """Transition history (most recent last)."""
        return self._history.copy()

    async def run(self, events: AsyncIterator[TransportEvent]) -> None:
        """Consume the transport event stream until it ends."""
        async for event in events:
            if not self._registry.is_current(self._session_id, self._generation):
                # Superseded or removed: nothing may reach the new entry
                continue
            try:
                await self.handle_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.event_failed(type(event).__name__, e)
                record_error("connection", type(e).__name__)

    async def handle_event(self, event: TransportEvent) -> None:
        """Dispatch one transport event."""
        if isinstance(event, QRCodeEvent):
            self.on_qr(event)
        elif isinstance(event, ConnectionOpenEvent):
            self.on_open()
        elif isinstance(event, ConnectionCloseEvent):
            await self.on_close(event)
        elif isinstance(event, MessagesUpsertEvent):
            await self.on_messages(event)
        elif isinstance(event, CredentialsUpdateEvent):
            await self.on_credentials(event)

    def transition_to(self, new_state: SessionStatus, reason: str = "") -> StateTransition | None:
        """Move to a new state and mirror it into the registry.

        Returns:
            StateTransition, or None when already in new_state

        Raises:
            SessionStateError: If the transition is not allowed
        """
        old_state = self._state
        if new_state == old_state:
            return None

        if new_state not in VALID_TRANSITIONS.get(old_state, set()):
            raise SessionStateError(
                f"Invalid transition: {old_state.value} → {new_state.value}",
                session_id=self._session_id,
                current_state=old_state.value,
                target_state=new_state.value,
            )

        self._state = new_state
        self._registry.set_status(self._session_id, new_state, generation=self._generation)

        transition = StateTransition(
            old_state=old_state,
            new_state=new_state,
            reason=reason,
            generation=self._generation,
        )
        self._history.append(transition)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        record_state_change(new_state.value)
        self._logger.state_change(old_state.value, new_state.value, reason)
        return transition

    def on_qr(self, event: QRCodeEvent) -> None:
        """Forward an authentication artifact verbatim."""
        self._broadcaster.publish(self._session_id, qr_event(event.data))

    def on_open(self) -> None:
        """Transport authenticated."""
        self.transition_to(SessionStatus.CONNECTED, "connection_open")
        self._registry.mark_connected(self._session_id, self._generation)
        self._broadcaster.publish(
            self._session_id, connection_event(SessionStatus.CONNECTED)
        )

    async def on_close(self, event: ConnectionCloseEvent) -> None:
        """Transport disconnected: terminal logout or reconnect."""
        self._logger.connection_closed(event.reason, will_reconnect=not event.is_logged_out)

        if event.is_logged_out:
            self.transition_to(SessionStatus.LOGGED_OUT, "remote_logout")
            await self._registry.remove(
                self._session_id,
                generation=self._generation,
                reason="logged_out",
            )
            if self._credential_store is not None:
                await asyncio.to_thread(self._credential_store.clear, self._session_id)
            self._broadcaster.publish(
                self._session_id, connection_event(SessionStatus.LOGGED_OUT)
            )
            return

        self.transition_to(SessionStatus.CONNECTING, "connection_closed")
        await self._registry.schedule_reconnect(self._session_id, self._generation)

    async def on_messages(self, event: MessagesUpsertEvent) -> None:
        """Forward live inbound messages and acknowledge commands."""
        if event.kind != BRIDGE.LIVE_NOTIFY_KIND:
            return

        for message in event.messages:
            if message.from_me:
                continue

            text = extract_text(message)
            if not text:
                continue

            command = parse_command(text)
            self._logger.message_received(message.remote_jid, len(text), command)
            record_message_received()

            self._broadcaster.publish(
                self._session_id,
                message_event(message.remote_jid, text, int(time.time() * 1000)),
            )

            if command is not None:
                await self._acknowledge_command(message.remote_jid, command)

    async def on_credentials(self, event: CredentialsUpdateEvent) -> None:
        """Persist updated authentication material."""
        if self._credential_store is None:
            return
        await asyncio.to_thread(
            self._credential_store.save, self._session_id, event.credentials
        )

    async def _acknowledge_command(self, sender: str, command: str) -> None:
        try:
            await self._transport.send_text(sender, command_ack_text(command))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            record_command_ack("error")
            self._logger.event_failed("command_ack", e)
            return
        record_command_ack("success")
