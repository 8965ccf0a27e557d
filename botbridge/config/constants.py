"""Bridge Constants - Protocol defaults and timings.

These values define the default behavior of the bridge. Anything an
operator may want to tune is mirrored as a setting in settings.py.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class BridgeConstants:
    """Immutable bridge defaults.

    All timing values in seconds unless otherwise noted.
    """

    # Reconnection
    RECONNECT_DELAY_S: Final[float] = 5.0  # Fixed delay before a reconnect attempt
    RECONNECT_MAX_DELAY_S: Final[float] = 300.0  # Ceiling when backoff grows

    # Pairing
    PAIRING_SETTLE_S: Final[float] = 2.0  # Fallback wait before requesting a code
    PAIRING_READY_TIMEOUT_S: Final[float] = 10.0  # Max wait for the readiness signal
    PAIRING_INSTRUCTIONS: Final[str] = (
        "Enter this code in WhatsApp > Linked Devices > Link a Device"
    )

    # Transport
    TRANSPORT_CONNECT_TIMEOUT_S: Final[float] = 60.0
    DEFAULT_USER_DOMAIN: Final[str] = "s.whatsapp.net"  # Suffix for bare phone recipients
    BROWSER_NAME: Final[str] = "BotForge"

    # Inbound messages
    COMMAND_SIGIL: Final[str] = "/"
    LIVE_NOTIFY_KIND: Final[str] = "notify"  # Upsert kind for live (non-backfill) messages

    # Push channel
    WS_POLICY_VIOLATION: Final[int] = 1008  # Close code for a missing sessionId
    SUBSCRIBER_QUEUE_SIZE: Final[int] = 100  # Events buffered per subscriber

    # State machine
    MAX_TRANSITION_HISTORY: Final[int] = 50


# Singleton instance for import convenience
BRIDGE = BridgeConstants()
