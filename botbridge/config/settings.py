"""Application Settings - Environment-based configuration.

Uses Pydantic Settings for validation and type coercion.

Required variables fail startup if missing.
Conditional variables are required only when their parent feature is enabled.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from botbridge.config.constants import BRIDGE


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API bind host")
    api_port: int = Field(default=3000, ge=1, le=65535, description="API port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment name"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins",
    )

    # Authentication
    api_key: str | None = Field(
        default=None,
        description="API key for authentication (required in production)",
    )
    auth_enabled: bool = Field(
        default=True,
        description="Enable API authentication (auto-disabled in development if no key)",
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_per_minute: int = Field(
        default=120, ge=1, description="Default requests per minute per client"
    )
    pair_rate_limit: str = Field(
        default="5/minute", description="Limit for pairing requests"
    )

    # Transport Configuration
    transport_engine: Literal["mock", "bridge"] = Field(
        default="bridge",
        description="Messaging transport (mock for testing, bridge for production)",
    )
    bridge_url: str | None = Field(
        default=None,
        description="WebSocket URL of the protocol bridge (required for bridge engine)",
    )
    transport_connect_timeout_s: float = Field(
        default=BRIDGE.TRANSPORT_CONNECT_TIMEOUT_S,
        gt=0,
        description="Timeout for opening a transport connection",
    )
    browser_name: str = Field(
        default=BRIDGE.BROWSER_NAME,
        description="Client name announced to the messaging network",
    )
    default_user_domain: str = Field(
        default=BRIDGE.DEFAULT_USER_DOMAIN,
        description="Domain appended to recipients given as bare phone numbers",
    )

    # Credential storage
    sessions_dir: str = Field(
        default="sessions",
        description="Directory holding per-session authentication material",
    )

    # Reconnection policy
    reconnect_delay_s: float = Field(
        default=BRIDGE.RECONNECT_DELAY_S,
        ge=0,
        description="Delay before the first reconnect attempt",
    )
    reconnect_max_delay_s: float = Field(
        default=BRIDGE.RECONNECT_MAX_DELAY_S,
        ge=0,
        description="Upper bound for the reconnect delay",
    )
    reconnect_backoff_factor: float = Field(
        default=1.0,
        ge=1.0,
        description="Delay multiplier per consecutive attempt (1.0 = fixed delay)",
    )
    reconnect_jitter: bool = Field(
        default=False, description="Randomize reconnect delays"
    )
    reconnect_max_attempts: int = Field(
        default=0,
        ge=0,
        description="Consecutive reconnect attempts before giving up (0 = unlimited)",
    )

    # Pairing
    pairing_settle_s: float = Field(
        default=BRIDGE.PAIRING_SETTLE_S,
        ge=0,
        description="Fixed wait before a pairing request when no readiness signal exists",
    )
    pairing_ready_timeout_s: float = Field(
        default=BRIDGE.PAIRING_READY_TIMEOUT_S,
        gt=0,
        description="Max wait for the transport readiness signal",
    )

    # Push channel
    subscriber_queue_size: int = Field(
        default=BRIDGE.SUBSCRIBER_QUEUE_SIZE,
        ge=1,
        le=10_000,
        description="Events buffered per WebSocket subscriber before dropping",
    )

    # Observability
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics")

    def model_post_init(self, __context) -> None:
        """Validate conditional requirements after model creation."""
        if self.reconnect_max_delay_s < self.reconnect_delay_s:
            raise ValueError(
                "reconnect_max_delay_s must be >= reconnect_delay_s"
            )

        if self.transport_engine == "bridge" and not self.bridge_url:
            raise ValueError(
                "bridge_url is required when transport_engine=bridge"
            )

        # Validate API key in production
        if self.environment == "production" and self.auth_enabled and not self.api_key:
            raise ValueError(
                "api_key is required when auth_enabled=true in production environment"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
