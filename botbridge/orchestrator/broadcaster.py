"""Broadcaster - Fan-out of session events to subscriber channels.

Maps a session id to the ordered list of channels observing it. Channels
are attached independently of the session itself: a channel may subscribe
before the session exists and stays attached after it is removed.

Delivery is fire-and-forget. A channel accepts or rejects an event without
blocking; rejected or failing channels never affect the others.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

from botbridge.observability.logging import get_logger
from botbridge.observability.metrics import (
    record_event_dropped,
    record_event_published,
    update_subscribers,
)
from botbridge.orchestrator.status import SessionStatus

logger = get_logger(__name__)

StatusLookup = Callable[[str], SessionStatus | None]


class SubscriberChannel(Protocol):
    """A push-capable connection observing one session."""

    @property
    def is_open(self) -> bool:
        """Whether the channel can currently accept events."""
        ...

    def offer(self, event: dict[str, Any]) -> bool:
        """Hand an event to the channel without blocking.

        Returns:
            True if the channel accepted the event
        """
        ...


# -----------------------------------------------------------------------------
# Event envelopes
# -----------------------------------------------------------------------------


def qr_event(data: str) -> dict[str, Any]:
    """Authentication artifact envelope."""
    return {"type": "qr", "data": data}


def connection_event(status: SessionStatus | str) -> dict[str, Any]:
    """Connection status envelope."""
    value = status.value if isinstance(status, SessionStatus) else status
    return {"type": "connection", "status": value}


def message_event(sender: str, text: str, timestamp_ms: int) -> dict[str, Any]:
    """Inbound message envelope."""
    return {
        "type": "message",
        "data": {"from": sender, "text": text, "timestamp": timestamp_ms},
    }


class Broadcaster:
    """Session id to subscriber channel fan-out.

    Usage:
        broadcaster = Broadcaster(status_lookup=registry.current_status)

        broadcaster.subscribe("s1", channel)
        broadcaster.publish("s1", connection_event(SessionStatus.CONNECTED))
        broadcaster.unsubscribe("s1", channel)
    """

    def __init__(self, status_lookup: StatusLookup | None = None) -> None:
        self._channels: dict[str, list[SubscriberChannel]] = {}
        self._status_lookup = status_lookup

    def set_status_lookup(self, status_lookup: StatusLookup) -> None:
        """Set the callable used for the subscribe-time snapshot."""
        self._status_lookup = status_lookup

    @property
    def total_subscribers(self) -> int:
        """Channels attached across all sessions."""
        return sum(len(channels) for channels in self._channels.values())

    def subscriber_count(self, session_id: str) -> int:
        """Channels attached to one session."""
        return len(self._channels.get(session_id, ()))

    def subscribers(self, session_id: str) -> list[SubscriberChannel]:
        """Snapshot of the channels attached to one session."""
        return list(self._channels.get(session_id, ()))

    def subscribe(self, session_id: str, channel: SubscriberChannel) -> bool:
        """Attach a channel and push the current status snapshot.

        The snapshot is sent only when the session exists.

        Returns:
            True if a snapshot was delivered
        """
        self._channels.setdefault(session_id, []).append(channel)
        update_subscribers(self.total_subscribers)
        logger.info(
            "subscriber_attached",
            session_id=session_id,
            subscribers=self.subscriber_count(session_id),
        )

        status = self._status_lookup(session_id) if self._status_lookup else None
        if status is None or status is SessionStatus.NOT_FOUND:
            return False
        return self._deliver(session_id, channel, connection_event(status))

    def unsubscribe(self, session_id: str, channel: SubscriberChannel) -> bool:
        """Detach a channel. No-op if it is not attached.

        Returns:
            True if the channel was attached
        """
        channels = self._channels.get(session_id)
        if not channels or channel not in channels:
            return False

        channels.remove(channel)
        if not channels:
            del self._channels[session_id]

        update_subscribers(self.total_subscribers)
        logger.info(
            "subscriber_detached",
            session_id=session_id,
            subscribers=self.subscriber_count(session_id),
        )
        return True

    def publish(self, session_id: str, event: dict[str, Any]) -> int:
        """Offer an event to every open channel of a session.

        Returns:
            Number of channels that accepted the event
        """
        channels = self._channels.get(session_id)
        if not channels:
            return 0

        delivered = 0
        for channel in list(channels):
            if self._deliver(session_id, channel, event):
                delivered += 1

        record_event_published(event.get("type", "unknown"), delivered)
        return delivered

    def _deliver(
        self,
        session_id: str,
        channel: SubscriberChannel,
        event: dict[str, Any],
    ) -> bool:
        try:
            if not channel.is_open:
                record_event_dropped("closed")
                return False
            accepted = channel.offer(event)
        except Exception as e:
            record_event_dropped("error")
            logger.warning(
                "subscriber_delivery_failed",
                session_id=session_id,
                event_type=event.get("type"),
                error=str(e),
            )
            return False

        if not accepted:
            record_event_dropped("queue_full")
        return accepted
