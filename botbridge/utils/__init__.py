"""Utilities module."""

from botbridge.utils.async_timeout import AsyncTimeoutError, with_timeout
from botbridge.utils.backoff import ReconnectPolicy

__all__ = [
    "AsyncTimeoutError",
    "ReconnectPolicy",
    "with_timeout",
]
