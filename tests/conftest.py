"""Pytest configuration and shared fixtures."""

import os
import tempfile
from typing import Any, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Set test environment variables before importing settings
os.environ.update({
    "ENVIRONMENT": "development",
    "TRANSPORT_ENGINE": "mock",  # In-memory transport for testing
    "SESSIONS_DIR": tempfile.mkdtemp(prefix="botbridge-test-"),
    "RECONNECT_DELAY_S": "0.05",
    "RECONNECT_MAX_DELAY_S": "0.05",
    "PAIRING_SETTLE_S": "0",
    "PAIRING_READY_TIMEOUT_S": "1",
    "RATE_LIMIT_ENABLED": "false",  # Disable rate limiting for tests
    "LOG_LEVEL": "WARNING",
})
os.environ.pop("API_KEY", None)


class TransportRecorder:
    """Transport factory that builds MockTransports and keeps them.

    Usage:
        recorder = TransportRecorder(pairing_code="ABCD1234")
        hub = SessionHub(transport_factory=recorder)
        ...
        recorder.last.emit(ConnectionOpenEvent())
    """

    def __init__(self, **options: Any) -> None:
        self.options = options
        self.created = []

    def __call__(self, session_id, phone_number, credentials=None):
        from botbridge.transport.mock_transport import MockTransport

        transport = MockTransport(session_id, phone_number, credentials, **self.options)
        self.created.append(transport)
        return transport

    @property
    def last(self):
        return self.created[-1]


@pytest.fixture
def test_settings():
    """Provide test settings instance."""
    from botbridge.config.settings import Settings
    return Settings(
        transport_engine="mock",
        reconnect_delay_s=0.01,
        reconnect_max_delay_s=0.01,
        pairing_settle_s=0,
    )


@pytest.fixture
def recorder() -> TransportRecorder:
    """Provide a recording mock transport factory."""
    return TransportRecorder()


@pytest.fixture
def credential_store(tmp_path):
    """Provide a credential store in a temporary directory."""
    from botbridge.storage.credentials import CredentialStore
    return CredentialStore(tmp_path / "sessions")


@pytest_asyncio.fixture
async def hub(recorder, credential_store):
    """Provide a session hub on mock transports with fast timers."""
    from botbridge.orchestrator.hub import SessionHub
    from botbridge.utils.backoff import ReconnectPolicy

    session_hub = SessionHub(
        transport_factory=recorder,
        credential_store=credential_store,
        reconnect_policy=ReconnectPolicy(initial_delay_s=0.01, max_delay_s=0.01),
        connect_timeout_s=1.0,
        pairing_settle_s=0,
        pairing_ready_timeout_s=0.5,
    )
    yield session_hub
    await session_hub.shutdown()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Provide FastAPI test client."""
    from botbridge.main import app
    with TestClient(app) as c:
        yield c


class RecordingChannel:
    """Subscriber channel that keeps every accepted event."""

    def __init__(self, accept: bool = True) -> None:
        self.events: list[dict] = []
        self.accept = accept
        self.is_open = True

    def offer(self, event: dict) -> bool:
        if not self.accept:
            return False
        self.events.append(event)
        return True


@pytest.fixture
def channel() -> RecordingChannel:
    """Provide a recording subscriber channel."""
    return RecordingChannel()
