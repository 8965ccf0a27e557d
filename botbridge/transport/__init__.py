"""Transport module - Messaging network connections.

Supports multiple engines:
- bridge: Production engine using a protocol bridge over WebSocket
- mock: Testing engine with scripted events
"""

from botbridge.transport.base import (
    BaseTransport,
    ConnectionCloseEvent,
    ConnectionOpenEvent,
    CredentialsUpdateEvent,
    DisconnectReason,
    InboundMessage,
    MessagesUpsertEvent,
    QRCodeEvent,
    Transport,
    TransportEvent,
)
from botbridge.transport.factory import (
    TransportFactory,
    create_transport,
    transport_factory_from_settings,
)
from botbridge.transport.mock_transport import MockTransport

__all__ = [
    # Interface
    "Transport",
    "BaseTransport",
    "DisconnectReason",
    # Events
    "TransportEvent",
    "QRCodeEvent",
    "ConnectionOpenEvent",
    "ConnectionCloseEvent",
    "InboundMessage",
    "MessagesUpsertEvent",
    "CredentialsUpdateEvent",
    # Implementations
    "MockTransport",
    # BridgeTransport - lazy import via create_transport()
    # Factories
    "TransportFactory",
    "create_transport",
    "transport_factory_from_settings",
]
