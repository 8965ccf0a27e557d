"""Tests for the Session Registry.

Covers single-handle ownership, supersession, removal, logout and the
reconnection timers.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from botbridge.exceptions import TransportConnectError
from botbridge.orchestrator.broadcaster import Broadcaster
from botbridge.orchestrator.registry import SessionRegistry
from botbridge.orchestrator.status import SessionStatus
from botbridge.transport.base import ConnectionCloseEvent, ConnectionOpenEvent
from botbridge.utils.backoff import ReconnectPolicy

from conftest import RecordingChannel, TransportRecorder


async def wait_until(predicate, timeout=2.0):
    """Poll until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def make_registry(recorder, credential_store=None, delay=0.01, max_attempts=0):
    broadcaster = Broadcaster()
    registry = SessionRegistry(
        recorder,
        broadcaster,
        credential_store=credential_store,
        reconnect_policy=ReconnectPolicy(
            initial_delay_s=delay,
            max_delay_s=delay,
            max_attempts=max_attempts,
        ),
        connect_timeout_s=1.0,
    )
    broadcaster.set_status_lookup(registry.current_status)
    return registry, broadcaster


class TestCreate:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_create_registers_connecting(self, recorder):
        registry, _ = make_registry(recorder)

        entry = await registry.create("s1", "15551234567")

        assert registry.status("s1") is SessionStatus.CONNECTING
        assert entry.phone_number == "15551234567"
        assert entry.transport is recorder.last
        assert recorder.last.connect_calls == 1
        assert registry.active_count == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_unknown_session_is_not_found(self, recorder):
        registry, _ = make_registry(recorder)

        assert registry.get("nope") is None
        assert registry.current_status("nope") is None
        assert registry.status("nope") is SessionStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_create_supersedes_existing(self, recorder):
        """Re-creating an id retires the old handle without logging out."""
        registry, _ = make_registry(recorder)
        first = await registry.create("s1", "15551234567")

        second = await registry.create("s1", "15551234567")
        await asyncio.sleep(0.01)

        assert second.generation > first.generation
        assert first.transport.is_closed
        assert first.transport.logged_out is False
        assert first.consumer_task.done()
        assert registry.get("s1") is second
        assert registry.active_count == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_create_loads_stored_credentials(self, recorder, credential_store):
        credential_store.save("s1", {"me": {"id": "1"}})
        registry, _ = make_registry(recorder, credential_store)

        await registry.create("s1", "15551234567")

        assert recorder.last.credentials == {"me": {"id": "1"}}
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_connect_failure_raises_and_reconnects(self):
        """A failed connect is raised and retried in the background."""
        recorder = TransportRecorder(connect_error=RuntimeError("unreachable"))
        registry, _ = make_registry(recorder)

        with pytest.raises(TransportConnectError, match="unreachable"):
            await registry.create("s1", "15551234567")

        assert registry.status("s1") is SessionStatus.CONNECTING
        await wait_until(lambda: len(recorder.created) >= 2)
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_create_with_stale_generation_is_skipped(self, recorder):
        registry, _ = make_registry(recorder)
        old = await registry.create("s1", "15551234567")
        current = await registry.create("s1", "15551234567")

        assert await registry.create(
            "s1", "15551234567", expected_generation=old.generation
        ) is None
        assert registry.get("s1") is current
        assert len(recorder.created) == 2
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_create_for_removed_session_is_skipped(self, recorder):
        registry, _ = make_registry(recorder)
        entry = await registry.create("s1", "15551234567")
        await registry.remove("s1")

        assert await registry.create(
            "s1", "15551234567", expected_generation=entry.generation
        ) is None
        assert registry.status("s1") is SessionStatus.NOT_FOUND


class TestLocks:
    """Tests for per-id lock bookkeeping."""

    @pytest.mark.asyncio
    async def test_lock_kept_while_registered(self, recorder):
        registry, _ = make_registry(recorder)
        await registry.create("s1", "15551234567")
        assert "s1" in registry._locks
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_lock_dropped_after_remove(self, recorder):
        registry, _ = make_registry(recorder)
        await registry.create("s1", "15551234567")
        await registry.create("s2", "15557654321")

        await registry.remove("s1")
        await registry.disconnect("s2")

        assert registry._locks == {}
        assert registry._lock_users == {}

    @pytest.mark.asyncio
    async def test_many_sessions_do_not_accumulate_locks(self, recorder):
        registry, _ = make_registry(recorder)
        for n in range(20):
            await registry.create(f"s{n}", "15551234567")
            await registry.remove(f"s{n}")
        await registry.remove("never-created")

        assert registry._locks == {}


class TestStatusUpdates:
    """Tests for generation-guarded status updates."""

    @pytest.mark.asyncio
    async def test_set_status_current_generation(self, recorder):
        registry, _ = make_registry(recorder)
        entry = await registry.create("s1", "15551234567")

        assert registry.set_status("s1", SessionStatus.CONNECTED, generation=entry.generation)
        assert registry.status("s1") is SessionStatus.CONNECTED
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_set_status_stale_generation_ignored(self, recorder):
        registry, _ = make_registry(recorder)
        old = await registry.create("s1", "15551234567")
        await registry.create("s1", "15551234567")

        assert not registry.set_status("s1", SessionStatus.CONNECTED, generation=old.generation)
        assert registry.status("s1") is SessionStatus.CONNECTING
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_set_status_absent_session(self, recorder):
        registry, _ = make_registry(recorder)
        assert registry.set_status("ghost", SessionStatus.CONNECTED) is False


class TestRemove:
    """Tests for removal."""

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, recorder):
        registry, _ = make_registry(recorder)
        await registry.create("s1", "15551234567")

        assert await registry.remove("s1") is not None
        assert await registry.remove("s1") is None
        assert registry.status("s1") is SessionStatus.NOT_FOUND
        assert recorder.last.is_closed

    @pytest.mark.asyncio
    async def test_remove_stale_generation_ignored(self, recorder):
        registry, _ = make_registry(recorder)
        old = await registry.create("s1", "15551234567")
        await registry.create("s1", "15551234567")

        assert await registry.remove("s1", generation=old.generation) is None
        assert registry.active_count == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_remove_keeps_subscribers(self, recorder):
        registry, broadcaster = make_registry(recorder)
        await registry.create("s1", "15551234567")
        broadcaster.subscribe("s1", RecordingChannel())

        await registry.remove("s1")

        assert broadcaster.subscriber_count("s1") == 1


class TestDisconnect:
    """Tests for user-initiated logout."""

    @pytest.mark.asyncio
    async def test_disconnect_logs_out_and_removes(self, recorder, credential_store):
        registry, broadcaster = make_registry(recorder, credential_store)
        await registry.create("s1", "15551234567")
        credential_store.save("s1", {"me": {}})
        channel = RecordingChannel()
        broadcaster.subscribe("s1", channel)

        assert await registry.disconnect("s1") is True

        assert recorder.last.logged_out
        assert recorder.last.is_closed
        assert registry.status("s1") is SessionStatus.NOT_FOUND
        assert not credential_store.exists("s1")
        assert channel.events[-1] == {"type": "connection", "status": "logged_out"}

    @pytest.mark.asyncio
    async def test_disconnect_unknown_session(self, recorder):
        registry, _ = make_registry(recorder)
        assert await registry.disconnect("ghost") is False

    @pytest.mark.asyncio
    async def test_disconnect_survives_logout_failure(self, recorder):
        registry, _ = make_registry(recorder)
        entry = await registry.create("s1", "15551234567")
        entry.transport.logout = AsyncMock(side_effect=RuntimeError("socket closed"))

        assert await registry.disconnect("s1") is True
        assert registry.status("s1") is SessionStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, recorder):
        """A disconnected session never comes back through a timer."""
        registry, _ = make_registry(recorder, delay=0.05)
        entry = await registry.create("s1", "15551234567")
        recorder.last.emit(ConnectionCloseEvent(reason=None))
        await recorder.last.wait_drained()
        assert entry.reconnect_task is not None

        await registry.disconnect("s1")
        await asyncio.sleep(0.1)

        assert len(recorder.created) == 1
        assert registry.status("s1") is SessionStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_slow_logout_outlasts_reconnect_delay(self, recorder, credential_store):
        """A timer due during a slow logout does not bring the session back."""
        registry, broadcaster = make_registry(recorder, credential_store, delay=0.02)
        entry = await registry.create("s1", "15551234567")
        credential_store.save("s1", {"me": {}})
        channel = RecordingChannel()
        broadcaster.subscribe("s1", channel)
        recorder.last.emit(ConnectionCloseEvent(reason=None))
        await recorder.last.wait_drained()
        assert entry.reconnect_task is not None

        async def slow_logout():
            await asyncio.sleep(0.1)

        entry.transport.logout = slow_logout

        assert await registry.disconnect("s1") is True
        await asyncio.sleep(0.05)

        assert len(recorder.created) == 1
        assert registry.status("s1") is SessionStatus.NOT_FOUND
        assert not credential_store.exists("s1")
        assert channel.events[-1] == {"type": "connection", "status": "logged_out"}

    @pytest.mark.asyncio
    async def test_disconnect_wins_over_timer_waiting_on_lock(self, recorder):
        """A fired timer queued behind disconnect creates nothing."""
        registry, _ = make_registry(recorder, delay=0.05)
        entry = await registry.create("s1", "15551234567")
        recorder.last.emit(ConnectionCloseEvent(reason=None))
        await recorder.last.wait_drained()

        held = asyncio.Event()
        release = asyncio.Event()

        async def hold_lock():
            async with registry._locked("s1"):
                held.set()
                await release.wait()

        holder = asyncio.create_task(hold_lock())
        await held.wait()
        disconnecting = asyncio.create_task(registry.disconnect("s1"))
        await asyncio.sleep(0)
        # Timer fired and is now queued on the lock behind disconnect
        await wait_until(lambda: entry.reconnect_task is None)

        release.set()
        assert await disconnecting is True
        await holder
        await asyncio.sleep(0.05)

        assert len(recorder.created) == 1
        assert registry.status("s1") is SessionStatus.NOT_FOUND


class TestReconnect:
    """Tests for reconnection timers."""

    @pytest.mark.asyncio
    async def test_schedule_reconnect_stale_generation(self, recorder):
        registry, _ = make_registry(recorder)
        old = await registry.create("s1", "15551234567")
        await registry.create("s1", "15551234567")

        assert await registry.schedule_reconnect("s1", old.generation) is False
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_single_pending_timer(self, recorder):
        registry, _ = make_registry(recorder, delay=0.05)
        entry = await registry.create("s1", "15551234567")

        assert await registry.schedule_reconnect("s1", entry.generation)
        task = entry.reconnect_task
        assert await registry.schedule_reconnect("s1", entry.generation)

        assert entry.reconnect_task is task
        assert entry.reconnect_attempts == 1
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_reconnect_replaces_handle(self, recorder):
        registry, _ = make_registry(recorder)
        first = await registry.create("s1", "15551234567")

        await registry.schedule_reconnect("s1", first.generation)
        await wait_until(lambda: len(recorder.created) == 2)

        current = registry.get("s1")
        assert current.generation > first.generation
        assert current.reconnect_attempts == 1
        assert first.transport.is_closed
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_reconnect_cap_removes_session(self):
        """Exhausting the cap removes the session and reports not_found."""
        recorder = TransportRecorder(connect_error=RuntimeError("unreachable"))
        registry, broadcaster = make_registry(recorder, max_attempts=2)
        channel = RecordingChannel()
        broadcaster.subscribe("s1", channel)

        with pytest.raises(TransportConnectError):
            await registry.create("s1", "15551234567")

        await wait_until(lambda: registry.status("s1") is SessionStatus.NOT_FOUND)
        assert len(recorder.created) == 3
        assert channel.events[-1] == {"type": "connection", "status": "not_found"}

    @pytest.mark.asyncio
    async def test_open_after_reconnect_resets_attempts(self, recorder):
        registry, _ = make_registry(recorder, max_attempts=1)
        entry = await registry.create("s1", "15551234567")
        await registry.schedule_reconnect("s1", entry.generation)
        await wait_until(lambda: len(recorder.created) == 2)

        recorder.last.emit(ConnectionOpenEvent())
        await recorder.last.wait_drained()

        assert registry.get("s1").reconnect_attempts == 0
        assert await registry.schedule_reconnect("s1", registry.get("s1").generation)
        await registry.close_all()


class TestCloseAll:
    """Tests for shutdown."""

    @pytest.mark.asyncio
    async def test_close_all_without_logout(self, recorder):
        registry, _ = make_registry(recorder)
        await registry.create("s1", "15551234567")
        await registry.create("s2", "15557654321")

        assert await registry.close_all() == 2

        assert registry.active_count == 0
        assert all(t.is_closed and not t.logged_out for t in recorder.created)
