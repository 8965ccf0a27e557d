"""BotBridge - Messaging session bridge with pairing and live event fan-out."""

__version__ = "1.0.0"

# Export exception hierarchy for easy importing
from botbridge.exceptions import (
    BotBridgeError,
    ValidationError,
    SessionError,
    SessionNotFoundError,
    SessionNotConnectedError,
    SessionStateError,
    ConfigurationError,
    InvalidConfigError,
    TransportError,
    TransportConnectError,
    PairingError,
    MessageSendError,
)

__all__ = [
    "__version__",
    # Base
    "BotBridgeError",
    "ValidationError",
    # Session
    "SessionError",
    "SessionNotFoundError",
    "SessionNotConnectedError",
    "SessionStateError",
    # Configuration
    "ConfigurationError",
    "InvalidConfigError",
    # Transport
    "TransportError",
    "TransportConnectError",
    "PairingError",
    "MessageSendError",
]
