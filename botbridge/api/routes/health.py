"""Health check endpoints.

- /health: Service summary (active sessions, uptime)
- /healthz: Liveness probe (is the process alive?)
- /readyz: Readiness probe (is the service ready to accept traffic?)
- /metrics: Prometheus metrics endpoint
"""

from typing import Any

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from botbridge.config.settings import get_settings
from botbridge.orchestrator.hub import get_hub

router = APIRouter(tags=["health"])


# Health status tracking
_ready: bool = False
_components: dict[str, bool] = {
    "session_hub": False,
    "credential_store": False,
}


def set_ready(ready: bool) -> None:
    """Set overall readiness status."""
    global _ready
    _ready = ready


def set_component_health(component: str, healthy: bool) -> None:
    """Set health status for a specific component."""
    if component in _components:
        _components[component] = healthy


def get_component_health() -> dict[str, bool]:
    """Get health status of all components."""
    return _components.copy()


@router.get("/health")
async def health() -> dict[str, Any]:
    """Service summary: {status, activeSessions, uptime}."""
    return get_hub().health()


@router.get("/healthz", response_model=dict[str, str])
async def healthz() -> dict[str, str]:
    """Liveness probe.

    Returns 200 if the process is alive.
    """
    return {"status": "alive"}


@router.get("/readyz")
async def readyz(response: Response) -> dict[str, Any]:
    """Readiness probe.

    Returns 503 until startup completed and every component is healthy.
    """
    if _ready and all(_components.values()):
        return {
            "status": "ready",
            "components": _components,
        }

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "not_ready",
        "components": _components,
    }


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition."""
    if not get_settings().metrics_enabled:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
