"""Pairing Flow - Phone-number pairing handshake.

Creates (or supersedes) the session, waits until the transport can take a
pairing request, then asks for the one-time code. The code is returned to
the caller only: it is never stored and never broadcast.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass

from botbridge.config.constants import BRIDGE
from botbridge.exceptions import PairingError, TransportError, ValidationError
from botbridge.observability.logging import PairingLogger
from botbridge.observability.metrics import record_pairing
from botbridge.orchestrator.registry import SessionRegistry
from botbridge.utils.async_timeout import AsyncTimeoutError, with_timeout

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_phone(raw: str) -> str:
    """Strip everything but digits: "+1 (555) 123-4567" -> "15551234567"."""
    return _NON_DIGITS.sub("", raw or "")


@dataclass
class PairingResult:
    """Outcome of a successful pairing request."""

    session_id: str
    pair_code: str
    phone_number: str
    instructions: str = BRIDGE.PAIRING_INSTRUCTIONS


class PairingFlow:
    """Pairing handshake on top of the registry.

    Usage:
        flow = PairingFlow(registry)
        result = await flow.request_pairing("s1", "+1 555 123 4567")
        print(result.pair_code)
    """

    def __init__(
        self,
        registry: SessionRegistry,
        settle_s: float = BRIDGE.PAIRING_SETTLE_S,
        ready_timeout_s: float = BRIDGE.PAIRING_READY_TIMEOUT_S,
    ) -> None:
        self._registry = registry
        self._settle_s = settle_s
        self._ready_timeout_s = ready_timeout_s

    async def request_pairing(self, session_id: str, raw_phone: str) -> PairingResult:
        """Create the session and obtain a pairing code.

        Args:
            session_id: Session identifier
            raw_phone: Phone number in any notation

        Returns:
            PairingResult with the one-time code

        Raises:
            ValidationError: If the id is empty or the number has no digits
            PairingError: If the transport fails at any step
        """
        if not session_id:
            raise ValidationError("sessionId and phoneNumber required", field="sessionId")

        phone = normalize_phone(raw_phone)
        if not phone:
            raise ValidationError("sessionId and phoneNumber required", field="phoneNumber")

        log = PairingLogger(session_id)
        log.pairing_started(phone)
        started = time.perf_counter()

        try:
            entry = await self._registry.create(session_id, phone, origin="pair")
        except TransportError as e:
            self._fail(log, started, e.message)
            raise PairingError(session_id, e.message) from e

        transport = entry.transport
        if transport.supports_ready_signal:
            try:
                await with_timeout(
                    transport.wait_until_ready(),
                    timeout_s=self._ready_timeout_s,
                    operation="transport readiness",
                )
            except AsyncTimeoutError:
                log.readiness_timeout(self._ready_timeout_s)
        else:
            await asyncio.sleep(self._settle_s)

        try:
            code = await transport.request_pairing_code(phone)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            self._fail(log, started, reason)
            raise PairingError(session_id, reason) from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        log.pairing_completed(elapsed_ms)
        record_pairing("success", elapsed_ms)

        return PairingResult(session_id=session_id, pair_code=code, phone_number=phone)

    @staticmethod
    def _fail(log: PairingLogger, started: float, reason: str) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000
        log.pairing_failed(reason, elapsed_ms)
        record_pairing("error")
