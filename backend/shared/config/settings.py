"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging. Empty level follows `debug`; format is "json" or "console" (empty: json in production)
    log_level: str = ""
    log_format: str = ""

    # Comma-separated list of allowed origins (empty uses default localhost list)
    allowed_origins: str = ""

    # Server
    ws_gateway_port: int = 8001
    public_ws_url: str = "ws://localhost:8001/ws"

    # JWT verification. Tokens are issued by the auth service; we only verify.
    jwt_secret: str = "dev-secret-change-me-in-production"
    jwt_algorithm: str = "HS256"
    # Empty issuer/audience disables the corresponding claim check
    jwt_issuer: str = "delivery-platform"
    jwt_audience: str = "delivery-platform-users"
    jwt_access_token_expire_minutes: int = 15

    # WebSocket limits
    ws_max_connections_per_identity: int = 5
    ws_max_total_connections: int = 1000
    ws_max_message_size: int = 64 * 1024  # 64 KB
    ws_send_timeout: float = 5.0  # Per-connection write timeout in seconds
    ws_receive_timeout: float = 90.0
    ws_heartbeat_timeout: int = 60  # Consider connection dead after this many seconds
    ws_heartbeat_sweep_interval: int = 30
    ws_message_rate_limit: int = 20  # Max messages per window per connection
    ws_message_rate_window: int = 1  # Window in seconds

    # Order rooms are released this long after an order reaches a terminal status
    order_room_release_grace_seconds: float = 30.0

    # Push notifications
    push_mode: str = "mock"  # "mock" or "fcm"
    fcm_server_key: str = ""
    fcm_endpoint: str = "https://fcm.googleapis.com/fcm/send"
    push_timeout: float = 5.0
    notification_history_size: int = 100

    # Order service lookup (empty uses the in-process snapshot store)
    order_service_url: str = ""
    order_service_timeout: float = 3.0

    # Redis inbound event channel
    redis_url: str = "redis://localhost:6379"
    redis_events_enabled: bool = False
    redis_events_channel: str = "orders:events"
    redis_max_reconnect_attempts: int = 20
    redis_reconnect_base_delay: float = 1.0
    redis_reconnect_max_delay: float = 30.0

    # HTTP rate limiting (slowapi syntax)
    mobile_rate_limit: str = "30/minute"

    def validate_production_secrets(self) -> list[str]:
        """
        Validate that secrets are properly configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        WEAK_SECRETS = {
            "dev-secret-change-me-in-production",
            "secret",
            "password",
            "changeme",
            "default",
        }

        if self.environment == "production":
            if self.jwt_secret in WEAK_SECRETS or len(self.jwt_secret) < 32:
                errors.append(
                    "JWT_SECRET must be at least 32 characters and not a default value in production"
                )

            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.push_mode == "fcm" and not self.fcm_server_key:
                errors.append("FCM_SERVER_KEY must be set when PUSH_MODE is fcm")

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

JWT_SECRET = settings.jwt_secret
JWT_ISSUER = settings.jwt_issuer
JWT_AUDIENCE = settings.jwt_audience
