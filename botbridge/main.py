"""BotBridge - FastAPI Application Entry Point.

Multi-session messaging bridge: phone-number pairing, connection status,
outbound text, logout, and live session events over WebSocket.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from botbridge import __version__
from botbridge.api.middleware.request_id import RequestIDMiddleware
from botbridge.api.ratelimit import limiter, rate_limit_exceeded_handler
from botbridge.api.routes import health, sessions
from botbridge.api.websocket import events
from botbridge.config.settings import get_settings
from botbridge.exceptions import BotBridgeError
from botbridge.observability.logging import get_logger, init_logging
from botbridge.orchestrator.hub import SessionHub, set_hub

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown of components.
    """
    settings = get_settings()
    init_logging(
        json_format=settings.environment == "production",
        level=settings.log_level,
    )
    logger.info(
        "botbridge_starting",
        version=__version__,
        environment=settings.environment,
        port=settings.api_port,
        transport_engine=settings.transport_engine,
    )

    try:
        Path(settings.sessions_dir).mkdir(parents=True, exist_ok=True)
        health.set_component_health("credential_store", True)

        hub = SessionHub.from_settings(settings)
        set_hub(hub)
        health.set_component_health("session_hub", True)

        health.set_ready(True)
        logger.info("botbridge_ready", components=health.get_component_health())

    except Exception as e:
        logger.error("botbridge_startup_failed", error=str(e))
        raise

    yield  # Application runs here

    logger.info("botbridge_shutting_down")
    health.set_ready(False)

    closed = await hub.shutdown()
    logger.info("sessions_closed", count=closed)

    health.set_component_health("session_hub", False)
    set_hub(None)
    logger.info("botbridge_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BotBridge",
        description="Messaging session bridge with pairing and live event fan-out",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(events.router)

    @app.exception_handler(BotBridgeError)
    async def bridge_exception_handler(request: Request, exc: BotBridgeError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "request_failed",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=exc.message,
            details=exc.details,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "botbridge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=settings.environment == "development",
    )
