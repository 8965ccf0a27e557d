"""Public Paths Registry - Endpoints exempt from authentication.

Usage:
    from botbridge.api.public_paths import is_public_path

    if is_public_path(request.url.path):
        return

Categories:
    - HEALTH_PATHS: Liveness and readiness probes
    - METRICS_PATHS: Prometheus scraping
    - PUBLIC_PATHS: Union of all paths that bypass authentication
"""

from typing import Final

HEALTH_PATHS: Final[frozenset[str]] = frozenset({
    "/health",
    "/healthz",
    "/readyz",
})

METRICS_PATHS: Final[frozenset[str]] = frozenset({
    "/metrics",
})

PUBLIC_PATHS: Final[frozenset[str]] = HEALTH_PATHS | METRICS_PATHS


def is_health_path(path: str) -> bool:
    """Check if path is a health probe endpoint.

    Example:
        >>> is_health_path("/health")
        True
        >>> is_health_path("/api/send")
        False
    """
    return path in HEALTH_PATHS


def is_public_path(path: str) -> bool:
    """Check if path is publicly accessible (no authentication required).

    Example:
        >>> is_public_path("/metrics")
        True
        >>> is_public_path("/api/pair")
        False
    """
    return path in PUBLIC_PATHS
