"""Mock Transport - For testing without a messaging network.

Records every command and lets tests drive the event stream with emit().
Usage:
    Set TRANSPORT_ENGINE=mock in .env to use this transport.
"""

import secrets
import string
from typing import Any

from botbridge.transport.base import (
    BaseTransport,
    ConnectionCloseEvent,
    ConnectionOpenEvent,
    DisconnectReason,
)

PAIRING_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_pairing_code(length: int = 8) -> str:
    """Random code in the shape the network issues."""
    return "".join(secrets.choice(PAIRING_CODE_ALPHABET) for _ in range(length))


class MockTransport(BaseTransport):
    """In-memory transport.

    Features:
    - Readiness fires on connect
    - Optional automatic open event after connect
    - Injectable failures for connect, send and pairing
    - Logout emits a logged-out close event, as the network does

    Usage:
        transport = MockTransport("s1", "15551234567")
        await transport.connect()
        transport.emit(ConnectionOpenEvent())
        await transport.wait_drained()
    """

    supports_ready_signal = True

    def __init__(
        self,
        session_id: str,
        phone_number: str,
        credentials: dict[str, Any] | None = None,
        auto_open: bool = False,
        pairing_code: str | None = None,
        connect_error: Exception | None = None,
        send_error: Exception | None = None,
        pairing_error: Exception | None = None,
    ) -> None:
        super().__init__(session_id, phone_number, credentials)
        self.auto_open = auto_open
        self.pairing_code = pairing_code
        self.connect_error = connect_error
        self.send_error = send_error
        self.pairing_error = pairing_error

        self.connect_calls = 0
        self.sent: list[tuple[str, str]] = []
        self.pairing_requests: list[str] = []
        self.logged_out = False

    @property
    def credentials(self) -> dict[str, Any] | None:
        """Credentials the transport was built with."""
        return self._credentials

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self.mark_ready()
        if self.auto_open:
            self.emit(ConnectionOpenEvent())

    async def send_text(self, jid: str, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, text))

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pairing_requests.append(phone_number)
        if self.pairing_error is not None:
            raise self.pairing_error
        return self.pairing_code or generate_pairing_code()

    async def logout(self) -> None:
        self.logged_out = True
        self.emit(ConnectionCloseEvent(reason=DisconnectReason.LOGGED_OUT))
