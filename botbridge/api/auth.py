"""API Authentication - API key checks for protected endpoints.

Provides authentication for the BotBridge API:
- API key validation via X-API-Key header on /api/*
- API key validation via the apiKey query parameter on the push channel
- Skips auth in development mode when no key configured
- Always skips auth for health and metrics endpoints
"""

import secrets

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import APIKeyHeader

from botbridge.api.public_paths import is_public_path
from botbridge.config.settings import Settings, get_settings
from botbridge.observability.logging import get_logger

logger = get_logger(__name__)

# API key header extractor
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Query parameter carrying the key on the push channel
WS_API_KEY_PARAM = "apiKey"


def _constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time to prevent timing attacks."""
    return secrets.compare_digest(a.encode(), b.encode())


def auth_required(settings: Settings) -> bool:
    """Whether requests must present a key under these settings."""
    if not settings.auth_enabled:
        return False
    if settings.environment == "development" and not settings.api_key:
        return False
    return True


def check_api_key(api_key: str | None, settings: Settings) -> str | None:
    """Validate a presented key.

    Returns:
        None if accepted, otherwise the rejection reason
    """
    if not auth_required(settings):
        return None
    if not api_key:
        return "Missing API key"
    if not _constant_time_compare(api_key, settings.api_key or ""):
        return "Invalid API key"
    return None


async def verify_api_key(
    request: Request,
    api_key: str | None = Depends(api_key_header),
) -> None:
    """Verify API key from request header.

    Raises:
        HTTPException: 401 if authentication fails
    """
    if is_public_path(request.url.path):
        return

    rejection = check_api_key(api_key, get_settings())
    if rejection is None:
        return

    logger.warning(
        "auth_failed",
        reason=rejection,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown",
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=rejection,
        headers={"WWW-Authenticate": "ApiKey"},
    )


def verify_websocket_key(websocket: WebSocket) -> str | None:
    """Check the push channel's apiKey query parameter.

    Returns:
        None if accepted, otherwise the rejection reason
    """
    rejection = check_api_key(
        websocket.query_params.get(WS_API_KEY_PARAM), get_settings()
    )
    if rejection is not None:
        logger.warning(
            "auth_failed",
            reason=rejection,
            path=websocket.url.path,
            client_ip=websocket.client.host if websocket.client else "unknown",
        )
    return rejection


def generate_api_key() -> str:
    """Generate a secure random API key.

    Returns:
        32-byte hex-encoded API key (64 characters)
    """
    return secrets.token_hex(32)
