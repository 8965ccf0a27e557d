"""Request ID middleware for correlating logs of one HTTP request.

Provides:
- Automatic request ID generation
- Header extraction (X-Request-ID)
- Propagation through structlog contextvars

Every log line emitted while handling the request carries request_id.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to handle request ID extraction and generation."""

    async def dispatch(self, request: Request, call_next):
        """Process request and inject request ID.

        Returns:
            Response with X-Request-ID header
        """
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()

        request.state.request_id = request_id

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response: Response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def generate_request_id() -> str:
    """Generate a unique request ID (UUID4 hex)."""
    return uuid.uuid4().hex
