from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    status_db_url: str = "sqlite+aiosqlite:///data/statuspage.db"

    # Logging
    status_log_level: str = "info"

    # CORS
    status_cors_origins: str = "http://localhost:3000"

    # Health check defaults (overridable at runtime via system_config)
    status_health_check_enabled: bool = True
    status_scheduler_interval_ms: int = 10000
    status_thread_pool_size: int = 10
    status_default_interval_seconds: int = 60
    status_default_timeout_seconds: int = 10
    status_scheduler_autostart: bool = True
    status_automated_incidents: bool = True  # open/resolve incidents on health check outages

    # HTTP probe client
    status_http_connect_timeout: float = 5.0
    status_http_user_agent: str = "statuspage-health-check/0.1"

    # Uptime history
    status_uptime_public_only: bool = True
    status_uptime_maintenance_policy: str = "fixed"  # "fixed" or "exclude"
    status_uptime_daily_hour: int = 0
    status_uptime_daily_minute: int = 5
    status_uptime_backfill_days: int = 7

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
