"""Orchestrator module - Session and state management.

Provides:
- SessionRegistry: Live sessions and reconnection timers
- ConnectionStateMachine: Per-handle transport event interpreter
- Broadcaster: Session event fan-out to subscribers
- PairingFlow: Phone-number pairing handshake
- SessionHub: Wiring used by the API layer
"""

from botbridge.orchestrator.status import SessionStatus, StateTransition
from botbridge.orchestrator.broadcaster import Broadcaster, SubscriberChannel
from botbridge.orchestrator.connection import ConnectionStateMachine
from botbridge.orchestrator.registry import SessionEntry, SessionRegistry
from botbridge.orchestrator.pairing import PairingFlow, PairingResult, normalize_phone
from botbridge.orchestrator.hub import SessionHub, get_hub, set_hub

__all__ = [
    # State
    "SessionStatus",
    "StateTransition",
    # Fan-out
    "Broadcaster",
    "SubscriberChannel",
    # Sessions
    "ConnectionStateMachine",
    "SessionEntry",
    "SessionRegistry",
    # Pairing
    "PairingFlow",
    "PairingResult",
    "normalize_phone",
    # Hub
    "SessionHub",
    "get_hub",
    "set_hub",
]
