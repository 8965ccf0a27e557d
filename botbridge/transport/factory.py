"""Transport Factory - Engine selection from settings.

Selects the transport implementation named by TRANSPORT_ENGINE:
- mock: in-memory transport for development and tests
- bridge: protocol bridge over WebSocket
"""

from typing import Any, Callable

from botbridge.config.settings import Settings, get_settings
from botbridge.exceptions import InvalidConfigError
from botbridge.transport.base import BaseTransport

# (session_id, phone_number, credentials) -> transport
TransportFactory = Callable[[str, str, dict[str, Any] | None], BaseTransport]


def create_transport(
    session_id: str,
    phone_number: str,
    credentials: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> BaseTransport:
    """Create a transport instance for one session.

    Args:
        session_id: Session identifier
        phone_number: Digits-only phone number
        credentials: Stored authentication material, if any
        settings: Override settings (defaults to cached settings)

    Returns:
        Unconnected transport instance

    Raises:
        InvalidConfigError: If the engine is unknown
    """
    settings = settings or get_settings()
    engine = settings.transport_engine

    if engine == "mock":
        from botbridge.transport.mock_transport import MockTransport

        return MockTransport(session_id, phone_number, credentials)

    if engine == "bridge":
        from botbridge.transport.bridge_transport import BridgeTransport

        return BridgeTransport(
            session_id,
            phone_number,
            credentials,
            url=settings.bridge_url,
            connect_timeout_s=settings.transport_connect_timeout_s,
            browser_name=settings.browser_name,
        )

    raise InvalidConfigError("transport_engine", engine, "expected mock or bridge")


def transport_factory_from_settings(settings: Settings) -> TransportFactory:
    """Bind settings into a TransportFactory."""

    def factory(
        session_id: str,
        phone_number: str,
        credentials: dict[str, Any] | None = None,
    ) -> BaseTransport:
        return create_transport(session_id, phone_number, credentials, settings=settings)

    return factory
