"""
Configuration management for Economy Guard.

Uses pydantic-settings to load configuration from environment variables
with sensible defaults for development.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Ledger database
    database_path: str = "economy_ledger.db"
    ledger_timeout_seconds: float = 5.0

    # Discord webhooks for operator notifications
    notification_webhook_url: str = ""
    emergency_webhook_url: str = ""
    monitoring_webhook_url: str = ""
    request_timeout_seconds: int = 10
    max_retries: int = 3

    # Economic health analysis
    health_analysis_enabled: bool = True
    health_analysis_interval_minutes: int = 15
    emergency_duration_minutes: int = 60
    emergency_max_bet: float = 50000.0

    # Anti-abuse housekeeping
    restriction_cleanup_interval_minutes: int = 15
    daily_cleanup_interval_hours: int = 24
    enforce_restrictions: bool = False  # Notification-only mode when False

    # Accounts left out of economy-wide statistics
    excluded_user_ids: list[str] = []
    max_user_wealth: float = 10_000_000_000.0

    # Admin API, served by the job runner alongside the scheduled jobs
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_file: str = "economy_guard.log"

    @property
    def has_notification_channel(self) -> bool:
        """Check if any webhook channel is configured."""
        return bool(self.notification_webhook_url or self.emergency_webhook_url or self.monitoring_webhook_url)


# Global settings instance
settings = Settings()
