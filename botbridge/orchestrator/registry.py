"""Session Registry - Single source of truth for live sessions.

Owns the mapping session_id -> SessionEntry (transport handle, phone
number, status) and the reconnection timers. Invariants:

- At most one live transport handle per session id. Creating a session
  for an id that is already registered retires the previous handle
  (transport closed, event consumer cancelled, pending timer cancelled).
- Every handle gets a new generation number. Events and timers carry the
  generation they were created for and are ignored once it is stale, so
  a removed session never comes back through a pending timer.

All state is confined to the event loop. Mutations of one id are
serialized by a per-id lock; other ids never wait on it.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from botbridge.exceptions import TransportConnectError
from botbridge.observability.logging import SessionLogger, get_logger
from botbridge.observability.metrics import (
    record_error,
    record_reconnect_exhausted,
    record_reconnect_scheduled,
    record_session_created,
    record_session_removed,
    update_active_sessions,
)
from botbridge.orchestrator.broadcaster import Broadcaster, connection_event
from botbridge.orchestrator.connection import ConnectionStateMachine
from botbridge.orchestrator.status import SessionStatus
from botbridge.storage.credentials import CredentialStore
from botbridge.transport.base import BaseTransport
from botbridge.transport.factory import TransportFactory
from botbridge.utils.async_timeout import with_timeout
from botbridge.utils.backoff import ReconnectPolicy

logger = get_logger(__name__)


@dataclass
class SessionEntry:
    """Registry record for one live transport handle."""

    session_id: str
    phone_number: str
    transport: BaseTransport
    generation: int
    status: SessionStatus = SessionStatus.CONNECTING
    reconnect_attempts: int = 0
    created_at: float = field(default_factory=time.time)
    connected_at: float | None = None
    machine: ConnectionStateMachine | None = None
    consumer_task: asyncio.Task | None = None
    reconnect_task: asyncio.Task | None = None

    def to_dict(self) -> dict[str, Any]:
        """Public view of the entry."""
        return {
            "sessionId": self.session_id,
            "status": self.status.value,
            "reconnectAttempts": self.reconnect_attempts,
            "createdAt": self.created_at,
            "connectedAt": self.connected_at,
        }


class SessionRegistry:
    """Registry of session entries and their reconnection timers.

    Usage:
        registry = SessionRegistry(transport_factory, broadcaster)

        entry = await registry.create("s1", "15551234567")
        registry.status("s1")          # SessionStatus.CONNECTING
        await registry.disconnect("s1")
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        broadcaster: Broadcaster,
        credential_store: CredentialStore | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
        connect_timeout_s: float | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._broadcaster = broadcaster
        self._credential_store = credential_store
        self._policy = reconnect_policy or ReconnectPolicy()
        self._connect_timeout_s = connect_timeout_s

        self._sessions: dict[str, SessionEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._generation = 0

    @property
    def active_count(self) -> int:
        """Number of registered sessions."""
        return len(self._sessions)

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        """Policy used for reconnection timers."""
        return self._policy

    def list_sessions(self) -> list[str]:
        """All registered session ids."""
        return list(self._sessions.keys())

    def get(self, session_id: str) -> SessionEntry | None:
        """Look up an entry. Absence is a normal outcome."""
        return self._sessions.get(session_id)

    def current_status(self, session_id: str) -> SessionStatus | None:
        """Status of a registered session, None when absent."""
        entry = self._sessions.get(session_id)
        return entry.status if entry else None

    def status(self, session_id: str) -> SessionStatus:
        """Status of a session, NOT_FOUND when absent."""
        return self.current_status(session_id) or SessionStatus.NOT_FOUND

    def is_current(self, session_id: str, generation: int) -> bool:
        """Whether generation is the live handle for session_id."""
        entry = self._sessions.get(session_id)
        return entry is not None and entry.generation == generation

    def set_status(
        self,
        session_id: str,
        status: SessionStatus,
        generation: int | None = None,
    ) -> bool:
        """Update an entry's status.

        No-op when the session is gone or the generation is stale.

        Returns:
            True if the entry was updated
        """
        entry = self._sessions.get(session_id)
        if entry is None:
            return False
        if generation is not None and entry.generation != generation:
            return False
        entry.status = status
        return True

    def mark_connected(self, session_id: str, generation: int) -> None:
        """Reset the reconnect counter after a successful open."""
        if not self.is_current(session_id, generation):
            return
        entry = self._sessions[session_id]
        entry.reconnect_attempts = 0
        entry.connected_at = time.time()

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        """Hold the per-id lock.

        The lock is dropped once nobody holds or waits for it and the id
        is no longer registered.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                if session_id not in self._sessions:
                    del self._locks[session_id]

    async def create(
        self,
        session_id: str,
        phone_number: str,
        *,
        origin: str = "pair",
        attempts: int = 0,
        expected_generation: int | None = None,
    ) -> SessionEntry | None:
        """Register a new transport handle for session_id and connect it.

        Supersedes any existing entry for the id. If connecting fails, the
        new entry stays registered, a reconnect is scheduled for it, and
        the failure is raised.

        Args:
            session_id: Session identifier
            phone_number: Digits-only phone number
            origin: "pair" or "reconnect" (metrics label)
            attempts: Consecutive reconnect attempts carried over
            expected_generation: Only replace the entry with this generation;
                nothing is created once it was removed or superseded

        Returns:
            The registered entry, or None when expected_generation is stale

        Raises:
            TransportConnectError: If the transport fails to connect
        """
        async with self._locked(session_id):
            if expected_generation is not None and not self.is_current(
                session_id, expected_generation
            ):
                logger.debug(
                    "create_skipped_stale",
                    session_id=session_id,
                    generation=expected_generation,
                )
                return None

            credentials = None
            if self._credential_store is not None:
                credentials = await asyncio.to_thread(self._credential_store.load, session_id)

            transport = self._transport_factory(session_id, phone_number, credentials)

            previous = self._sessions.pop(session_id, None)
            if previous is not None:
                await self._retire(previous)

            self._generation += 1
            entry = SessionEntry(
                session_id=session_id,
                phone_number=phone_number,
                transport=transport,
                generation=self._generation,
                reconnect_attempts=attempts,
            )
            entry.machine = ConnectionStateMachine(
                session_id=session_id,
                generation=entry.generation,
                transport=transport,
                registry=self,
                broadcaster=self._broadcaster,
                credential_store=self._credential_store,
            )
            self._sessions[session_id] = entry
            entry.consumer_task = asyncio.create_task(
                entry.machine.run(transport.events()),
                name=f"session-{session_id}-{entry.generation}",
            )

        SessionLogger(session_id, entry.generation).session_created(
            phone_number, superseded=previous is not None
        )
        record_session_created(origin)
        update_active_sessions(self.active_count)

        try:
            if self._connect_timeout_s:
                await with_timeout(
                    transport.connect(),
                    timeout_s=self._connect_timeout_s,
                    operation="transport connect",
                )
            else:
                await transport.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "transport_connect_failed",
                session_id=session_id,
                generation=entry.generation,
                error=str(e),
            )
            record_error("transport", "connect")
            if self.is_current(session_id, entry.generation):
                await self.schedule_reconnect(session_id, entry.generation)
            raise TransportConnectError(session_id, str(e) or type(e).__name__) from e

        return entry

    async def remove(
        self,
        session_id: str,
        *,
        generation: int | None = None,
        reason: str = "removed",
    ) -> SessionEntry | None:
        """Deregister a session and retire its handle. Idempotent.

        Subscriber channels stay attached.

        Args:
            session_id: Session identifier
            generation: Only remove if this generation is still current
            reason: Removal reason (logging and metrics)

        Returns:
            The removed entry, or None
        """
        async with self._locked(session_id):
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            if generation is not None and entry.generation != generation:
                return None

            del self._sessions[session_id]
            await self._retire(entry)

        SessionLogger(session_id, entry.generation).session_removed(reason)
        record_session_removed(reason)
        update_active_sessions(self.active_count)
        return entry

    async def disconnect(self, session_id: str) -> bool:
        """Log the session out and remove it.

        The entry is detached and its timer cancelled before logging out,
        so a pending reconnect can never bring the session back. Logout
        failures are logged, the session is removed regardless.

        Returns:
            True if the session existed
        """
        async with self._locked(session_id):
            entry = self._sessions.pop(session_id, None)
            if entry is None:
                return False
            self._stop_tasks(entry)

        try:
            await entry.transport.logout()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "transport_logout_failed",
                session_id=session_id,
                error=str(e),
            )
            record_error("transport", "logout")
        await self._close_transport(entry)

        SessionLogger(session_id, entry.generation).session_removed("disconnect")
        record_session_removed("disconnect")
        update_active_sessions(self.active_count)

        if session_id in self._sessions:
            # Paired again while logging out: credentials belong to the new handle
            return True

        if self._credential_store is not None:
            await asyncio.to_thread(self._credential_store.clear, session_id)
        self._broadcaster.publish(session_id, connection_event(SessionStatus.LOGGED_OUT))
        return True

    async def schedule_reconnect(self, session_id: str, generation: int) -> bool:
        """Arm one reconnection timer for the current handle.

        When the policy cap is exhausted the session is removed instead and
        subscribers are told it no longer exists.

        Returns:
            True if a timer was armed
        """
        entry = self._sessions.get(session_id)
        if entry is None or entry.generation != generation:
            return False

        if entry.reconnect_task is not None and not entry.reconnect_task.done():
            # One pending timer per handle
            return True

        attempt = entry.reconnect_attempts + 1
        session_log = SessionLogger(session_id, generation)

        if not self._policy.allows(attempt):
            session_log.reconnect_exhausted(entry.reconnect_attempts)
            record_reconnect_exhausted()
            removed = await self.remove(
                session_id, generation=generation, reason="reconnect_exhausted"
            )
            if removed is not None:
                self._broadcaster.publish(
                    session_id, connection_event(SessionStatus.NOT_FOUND)
                )
            return False

        delay = self._policy.delay_for(attempt)
        entry.reconnect_attempts = attempt
        entry.reconnect_task = asyncio.create_task(
            self._reconnect_later(session_id, entry.phone_number, generation, attempt, delay),
            name=f"reconnect-{session_id}-{generation}",
        )

        session_log.reconnect_scheduled(attempt, delay)
        record_reconnect_scheduled()
        return True

    async def _reconnect_later(
        self,
        session_id: str,
        phone_number: str,
        generation: int,
        attempt: int,
        delay: float,
    ) -> None:
        await asyncio.sleep(delay)

        entry = self._sessions.get(session_id)
        if entry is None or entry.generation != generation:
            logger.debug("reconnect_skipped_stale", session_id=session_id, generation=generation)
            return

        # create() retires this entry; it must not cancel the running timer
        entry.reconnect_task = None

        try:
            await self.create(
                session_id,
                phone_number,
                origin="reconnect",
                attempts=attempt,
                expected_generation=generation,
            )
        except TransportConnectError as e:
            # create() already armed the next attempt for the new handle
            logger.warning(
                "reconnect_attempt_failed",
                session_id=session_id,
                attempt=attempt,
                error=e.message,
            )
        except Exception as e:
            logger.error(
                "reconnect_attempt_error",
                session_id=session_id,
                attempt=attempt,
                error=str(e),
                exc_info=e,
            )
            record_error("registry", type(e).__name__)
            # The handle was never replaced, retry from it
            await self.schedule_reconnect(session_id, generation)

    async def close_all(self) -> int:
        """Retire every session without logging out.

        Stored credentials stay valid so sessions can be resumed.

        Returns:
            Number of sessions closed
        """
        count = 0
        for session_id in list(self._sessions.keys()):
            if await self.remove(session_id, reason="shutdown") is not None:
                count += 1
        return count

    async def _retire(self, entry: SessionEntry) -> None:
        """Stop everything belonging to a handle that left the registry."""
        self._stop_tasks(entry)
        await self._close_transport(entry)

    def _stop_tasks(self, entry: SessionEntry) -> None:
        current = asyncio.current_task()

        if entry.reconnect_task is not None and entry.reconnect_task is not current:
            entry.reconnect_task.cancel()
        entry.reconnect_task = None

        if entry.consumer_task is not None and entry.consumer_task is not current:
            entry.consumer_task.cancel()

    async def _close_transport(self, entry: SessionEntry) -> None:
        try:
            await entry.transport.close()
        except Exception as e:
            logger.warning(
                "transport_close_failed",
                session_id=entry.session_id,
                generation=entry.generation,
                error=str(e),
            )
