"""Prometheus Metrics - Session bridge observability.

Exports:
- Session lifecycle counts
- Reconnection and logout events
- Inbound message and command acknowledgement counts
- Event fan-out deliveries and drops
- Pairing outcomes and latency
"""

from prometheus_client import Counter, Gauge, Histogram

# -----------------------------------------------------------------------------
# Counters
# -----------------------------------------------------------------------------

SESSIONS_CREATED = Counter(
    "botbridge_sessions_created_total",
    "Transport handles registered",
    ["origin"],  # pair, reconnect
)

SESSIONS_REMOVED = Counter(
    "botbridge_sessions_removed_total",
    "Sessions removed from the registry",
    ["reason"],  # logged_out, disconnect, reconnect_exhausted
)

STATE_CHANGES = Counter(
    "botbridge_state_changes_total",
    "Connection state transitions",
    ["state"],  # connecting, connected, logged_out
)

RECONNECTS_SCHEDULED = Counter(
    "botbridge_reconnects_scheduled_total",
    "Reconnection attempts scheduled after a non-terminal close",
)

RECONNECTS_EXHAUSTED = Counter(
    "botbridge_reconnects_exhausted_total",
    "Sessions torn down after reaching the reconnection cap",
)

MESSAGES_RECEIVED = Counter(
    "botbridge_messages_received_total",
    "Inbound messages forwarded to subscribers",
)

COMMAND_ACKS = Counter(
    "botbridge_command_acks_total",
    "Command acknowledgements sent",
    ["status"],  # success, error
)

EVENTS_PUBLISHED = Counter(
    "botbridge_events_published_total",
    "Events accepted by subscriber channels",
    ["type"],  # qr, connection, message
)

EVENTS_DROPPED = Counter(
    "botbridge_events_dropped_total",
    "Events a subscriber channel could not accept",
    ["reason"],  # closed, queue_full, error
)

PAIRING_REQUESTS = Counter(
    "botbridge_pairing_requests_total",
    "Pairing code requests",
    ["status"],  # success, error
)

ERRORS = Counter(
    "botbridge_errors_total",
    "Errors by component",
    ["component", "type"],
)

# -----------------------------------------------------------------------------
# Gauges
# -----------------------------------------------------------------------------

ACTIVE_SESSIONS = Gauge(
    "botbridge_active_sessions",
    "Sessions currently registered",
)

SUBSCRIBERS = Gauge(
    "botbridge_subscribers",
    "Push channel subscribers currently attached",
)

# -----------------------------------------------------------------------------
# Histograms
# -----------------------------------------------------------------------------

PAIRING_LATENCY = Histogram(
    "botbridge_pairing_latency_seconds",
    "Time from pairing request to code",
    buckets=[0.5, 1.0, 2.0, 2.5, 3.0, 5.0, 10.0, 20.0, 30.0],
)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def record_session_created(origin: str = "pair") -> None:
    """Record a registered transport handle."""
    SESSIONS_CREATED.labels(origin=origin).inc()


def record_session_removed(reason: str) -> None:
    """Record a registry removal."""
    SESSIONS_REMOVED.labels(reason=reason).inc()


def record_state_change(state: str) -> None:
    """Record a connection state transition."""
    STATE_CHANGES.labels(state=state).inc()


def record_reconnect_scheduled() -> None:
    """Record an armed reconnection timer."""
    RECONNECTS_SCHEDULED.inc()


def record_reconnect_exhausted() -> None:
    """Record a session abandoned after the reconnection cap."""
    RECONNECTS_EXHAUSTED.inc()


def record_message_received() -> None:
    """Record an inbound message."""
    MESSAGES_RECEIVED.inc()


def record_command_ack(status: str = "success") -> None:
    """Record a command acknowledgement."""
    COMMAND_ACKS.labels(status=status).inc()


def record_event_published(event_type: str, deliveries: int) -> None:
    """Record accepted deliveries of one event."""
    if deliveries:
        EVENTS_PUBLISHED.labels(type=event_type).inc(deliveries)


def record_event_dropped(reason: str) -> None:
    """Record an event a subscriber could not accept."""
    EVENTS_DROPPED.labels(reason=reason).inc()


def record_pairing(status: str, latency_ms: float | None = None) -> None:
    """Record a pairing outcome."""
    PAIRING_REQUESTS.labels(status=status).inc()
    if latency_ms is not None:
        PAIRING_LATENCY.observe(latency_ms / 1000.0)


def record_error(component: str, error_type: str) -> None:
    """Record error by component."""
    ERRORS.labels(component=component, type=error_type).inc()


def update_active_sessions(count: int) -> None:
    """Update registered sessions gauge."""
    ACTIVE_SESSIONS.set(count)


def update_subscribers(count: int) -> None:
    """Update attached subscribers gauge."""
    SUBSCRIBERS.set(count)
