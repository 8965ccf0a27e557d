"""Async Timeout Utilities.

Provides a timeout wrapper for awaited transport operations.
"""

import asyncio
from typing import Awaitable, TypeVar

from botbridge.exceptions import BotBridgeError

T = TypeVar("T")


class AsyncTimeoutError(BotBridgeError):
    """Raised when an async operation times out."""

    status_code = 504

    def __init__(
        self,
        operation: str,
        timeout_s: float,
        details: dict | None = None,
    ) -> None:
        super().__init__(
            message=f"{operation} timed out after {timeout_s}s",
            details={
                "operation": operation,
                "timeout_s": timeout_s,
                **(details or {}),
            },
            recoverable=True,  # Caller can retry
        )
        self.operation = operation
        self.timeout_s = timeout_s


async def with_timeout(
    coro: Awaitable[T],
    timeout_s: float,
    operation: str = "operation",
) -> T:
    """Execute a coroutine with a timeout.

    Simple wrapper around asyncio.wait_for with custom exception.

    Args:
        coro: Coroutine to execute
        timeout_s: Maximum time in seconds
        operation: Name of operation for error messages

    Returns:
        Result of the coroutine

    Raises:
        AsyncTimeoutError: If operation times out

    Example:
        code = await with_timeout(
            transport.request_pairing_code(phone),
            timeout_s=30.0,
            operation="pairing code request",
        )
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_s)
    except asyncio.TimeoutError:
        raise AsyncTimeoutError(operation, timeout_s)
