"""Structured Logging - JSON logs with session correlation.

Provides structured logging for:
- Session lifecycle (create, connect, close, logout)
- Reconnection scheduling
- Inbound messages and command acknowledgements
- Subscriber attach/detach and delivery failures

All session logs include session_id for correlation.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; else human-readable
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging to use structlog
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


def bind_session(session_id: str) -> None:
    """Bind session_id to all logs in current context.

    Args:
        session_id: Session identifier
    """
    structlog.contextvars.bind_contextvars(session_id=session_id)


def unbind_session() -> None:
    """Remove session_id from log context."""
    structlog.contextvars.unbind_contextvars("session_id")


# -----------------------------------------------------------------------------
# Event-specific logging functions
# -----------------------------------------------------------------------------


class SessionLogger:
    """Logger for session lifecycle events."""

    def __init__(self, session_id: str, generation: int | None = None) -> None:
        self._session_id = session_id
        log = get_logger("session").bind(session_id=session_id)
        if generation is not None:
            log = log.bind(generation=generation)
        self._log = log

    def session_created(self, phone_number: str, superseded: bool) -> None:
        """Log registration of a new transport handle."""
        self._log.info(
            "session_created",
            event_type="session.created",
            phone_suffix=phone_number[-4:],
            superseded=superseded,
        )

    def session_removed(self, reason: str) -> None:
        """Log deregistration."""
        self._log.info(
            "session_removed",
            event_type="session.removed",
            reason=reason,
        )

    def state_change(self, old_state: str, new_state: str, reason: str) -> None:
        """Log state transition."""
        self._log.info(
            "state_change",
            event_type="session.state_change",
            old_state=old_state,
            new_state=new_state,
            reason=reason,
        )

    def connection_closed(self, reason_code: int | None, will_reconnect: bool) -> None:
        """Log a transport close."""
        self._log.info(
            "connection_closed",
            event_type="session.closed",
            reason_code=reason_code,
            will_reconnect=will_reconnect,
        )

    def reconnect_scheduled(self, attempt: int, delay_s: float) -> None:
        """Log an armed reconnection timer."""
        self._log.info(
            "reconnect_scheduled",
            event_type="session.reconnect_scheduled",
            attempt=attempt,
            delay_s=round(delay_s, 3),
        )

    def reconnect_exhausted(self, attempts: int) -> None:
        """Log giving up after the configured number of attempts."""
        self._log.error(
            "reconnect_exhausted",
            event_type="session.reconnect_exhausted",
            attempts=attempts,
        )

    def message_received(self, sender: str, text_length: int, command: str | None) -> None:
        """Log an inbound message (text itself is not logged)."""
        self._log.info(
            "message_received",
            event_type="message.received",
            sender=sender,
            text_length=text_length,
            command=command,
        )

    def event_failed(self, event: str, error: Exception) -> None:
        """Log an error raised while handling a transport event."""
        self._log.error(
            "transport_event_failed",
            event_type="session.event_failed",
            transport_event=event,
            error=str(error),
            error_type=type(error).__name__,
        )


class PairingLogger:
    """Logger for pairing handshakes."""

    def __init__(self, session_id: str) -> None:
        self._log = get_logger("pairing").bind(session_id=session_id)

    def pairing_started(self, phone_number: str) -> None:
        """Log pairing start."""
        self._log.info(
            "pairing_started",
            event_type="pairing.started",
            phone_suffix=phone_number[-4:],
        )

    def readiness_timeout(self, timeout_s: float) -> None:
        """Log a missing readiness signal."""
        self._log.warning(
            "pairing_ready_timeout",
            event_type="pairing.ready_timeout",
            timeout_s=timeout_s,
        )

    def pairing_completed(self, elapsed_ms: float) -> None:
        """Log a delivered pairing code (the code itself is not logged)."""
        self._log.info(
            "pairing_completed",
            event_type="pairing.completed",
            elapsed_ms=round(elapsed_ms, 1),
        )

    def pairing_failed(self, error: str, elapsed_ms: float) -> None:
        """Log pairing failure."""
        self._log.error(
            "pairing_failed",
            event_type="pairing.failed",
            error=error,
            elapsed_ms=round(elapsed_ms, 1),
        )


# Initialize default logging configuration
def init_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Initialize logging with defaults.

    Call this once at application startup.
    """
    configure_logging(level=level, json_format=json_format)
