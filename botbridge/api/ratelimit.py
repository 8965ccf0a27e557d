"""Rate Limiting - Protect API endpoints from abuse.

Uses slowapi for FastAPI-compatible rate limiting. Pairing gets its own,
stricter limit because every request opens a transport connection.
"""

from __future__ import annotations

import hashlib

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from botbridge.config.settings import get_settings
from botbridge.observability.logging import get_logger

logger = get_logger(__name__)


def _get_client_identifier(request: Request) -> str:
    """Get client identifier for rate limiting.

    Uses API key if present (for authenticated requests),
    otherwise falls back to IP address.
    """
    api_key = request.headers.get("X-API-Key")
    if api_key:
        # Hashed so the key never reaches storage or logs
        return "key:" + hashlib.sha256(api_key.encode()).hexdigest()[:12]

    return get_remote_address(request)


# Note: limits are computed at import time from settings
_settings = get_settings()

PAIR_LIMIT = _settings.pair_rate_limit

if _settings.rate_limit_enabled:
    limiter = Limiter(
        key_func=_get_client_identifier,
        default_limits=[f"{_settings.rate_limit_per_minute}/minute"],
        headers_enabled=False,
        strategy="fixed-window",
        enabled=True,
    )
else:
    # Disabled limiter for testing
    limiter = Limiter(
        key_func=_get_client_identifier,
        default_limits=[],
        enabled=False,
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors with a 429 {error} body."""
    logger.warning(
        "rate_limit_exceeded",
        client_id=_get_client_identifier(request),
        path=request.url.path,
        method=request.method,
        limit=str(exc.detail),
    )

    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded. Please slow down."},
        headers={"Retry-After": "60"},
    )
