"""BotBridge Exception Hierarchy.

Provides structured exception classes for the session core and the API layer.
Each class carries the HTTP status the route layer answers with.

Hierarchy:
    BotBridgeError (base)
    ├── ValidationError
    ├── SessionError
    │   ├── SessionNotFoundError
    │   ├── SessionNotConnectedError
    │   └── SessionStateError
    ├── ConfigurationError
    │   └── InvalidConfigError
    └── TransportError
        ├── TransportConnectError
        ├── PairingError
        └── MessageSendError
"""

from typing import Any


class BotBridgeError(Exception):
    """Base exception for all BotBridge errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the error can be recovered from
        status_code: HTTP status used when surfaced through the API
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ValidationError(BotBridgeError):
    """Raised when a request is missing fields or carries malformed values."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else None
        super().__init__(message, details, recoverable=False)
        self.field = field


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(BotBridgeError):
    """Base exception for session-related errors."""

    status_code = 400

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        details = details or {}
        if session_id:
            details["session_id"] = session_id
        super().__init__(message, details, recoverable)
        self.session_id = session_id


class SessionNotFoundError(SessionError):
    """Raised when a session cannot be found."""

    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"Session not found: {session_id}",
            session_id=session_id,
            recoverable=False,
        )


class SessionNotConnectedError(SessionError):
    """Raised when an operation needs a connected session."""

    def __init__(self, session_id: str, status: str | None = None) -> None:
        super().__init__(
            message="Session not connected",
            session_id=session_id,
            details={"status": status} if status else None,
            recoverable=True,  # Session may still reach connected
        )


class SessionStateError(SessionError):
    """Raised for invalid connection state transitions."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        current_state: str | None = None,
        target_state: str | None = None,
    ) -> None:
        details = {}
        if current_state:
            details["current_state"] = current_state
        if target_state:
            details["target_state"] = target_state
        super().__init__(message, session_id, details, recoverable=False)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(BotBridgeError):
    """Base exception for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: str,
    ) -> None:
        super().__init__(
            message=f"Invalid configuration for {config_key}: {reason}",
            details={
                "config_key": config_key,
                "value": str(value),
                "reason": reason,
            },
            recoverable=False,
        )


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(BotBridgeError):
    """Base exception for failures raised by the messaging transport."""

    pass


class TransportConnectError(TransportError):
    """Raised when the transport fails to open its connection."""

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(
            message=reason,
            details={"session_id": session_id},
            recoverable=True,  # Reconnection is scheduled in the background
        )
        self.session_id = session_id


class PairingError(TransportError):
    """Raised when a pairing code cannot be obtained."""

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(
            message=reason,
            details={"session_id": session_id},
            recoverable=False,
        )
        self.session_id = session_id


class MessageSendError(TransportError):
    """Raised when the transport rejects an outbound message."""

    def __init__(self, session_id: str, recipient: str, reason: str) -> None:
        super().__init__(
            message=reason,
            details={"session_id": session_id, "recipient": recipient},
            recoverable=False,
        )
        self.session_id = session_id
        self.recipient = recipient
