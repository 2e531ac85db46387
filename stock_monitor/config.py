"""Configuration management for the stock monitor."""

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .errors import ConfigurationError


REQUIRED_SETTINGS = {
    "notification_api_url": "NOTIFICATION_API_URL",
    "notification_api_key": "NOTIFICATION_API_KEY",
    "api_key": "API_KEY",
}


class MonitoringConfig(BaseModel):
    """Main configuration for the stock monitor."""

    # Environment settings
    environment: str = Field(default="production", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Logging level")

    # Storage
    db_path: str = Field(default="data/stock-checker.db", description="SQLite database file")

    # Scheduling
    max_concurrent_checks: int = Field(default=3, ge=0, description="Checks allowed in flight at once")
    default_interval_minutes: int = Field(default=5, ge=1, description="Interval used when a request gives none")

    # Rendering
    render_timeout_seconds: float = Field(default=90.0, gt=0, description="Upper bound for one page render")
    navigation_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for a single navigation")
    settle_delay_seconds: float = Field(default=5.0, ge=0, description="Wait after load for client-side rendering")
    text_snippet_chars: int = Field(default=500, ge=1, description="Characters of page text kept for inference")
    browser_headless: bool = Field(default=True, description="Run browser in headless mode")

    # Notification transport
    notification_api_url: str = Field(default="", description="Text message gateway endpoint")
    notification_api_key: str = Field(default="", description="Gateway api key")
    notification_timeout_seconds: float = Field(default=15.0, gt=0, description="Gateway request timeout")
    send_confirmation: bool = Field(default=True, description="Text subscribers when they register")

    # HTTP surface
    api_key: str = Field(default="", description="Bearer token accepted by the HTTP API")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Bind port")

    def missing_required(self) -> list[str]:
        """Environment variable names of required settings that are unset."""
        return [env for attr, env in REQUIRED_SETTINGS.items() if not str(getattr(self, attr) or "").strip()]

    def ensure_required(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")


_INT_FIELDS = {"max_concurrent_checks", "default_interval_minutes", "port"}
_FLOAT_FIELDS = {
    "render_timeout_seconds",
    "navigation_timeout_seconds",
    "settle_delay_seconds",
    "notification_timeout_seconds",
}
_BOOL_FIELDS = {"browser_headless", "send_confirmation"}


def load_config(config_path: Optional[str] = None) -> MonitoringConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("STOCK_MONITOR_CONFIG", "config/stock_monitor.yaml")

    config_data = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides = {
        "environment": os.getenv("MONITORING_ENV"),
        "log_level": os.getenv("LOG_LEVEL"),
        "db_path": os.getenv("STOCK_MONITOR_DB_PATH"),
        "max_concurrent_checks": os.getenv("MAX_CONCURRENT_CHECKS"),
        "default_interval_minutes": os.getenv("DEFAULT_INTERVAL_MINUTES"),
        "render_timeout_seconds": os.getenv("RENDER_TIMEOUT_SECONDS"),
        "navigation_timeout_seconds": os.getenv("NAVIGATION_TIMEOUT_SECONDS"),
        "settle_delay_seconds": os.getenv("SETTLE_DELAY_SECONDS"),
        "browser_headless": os.getenv("BROWSER_HEADLESS"),
        "notification_api_url": os.getenv("NOTIFICATION_API_URL"),
        "notification_api_key": os.getenv("NOTIFICATION_API_KEY"),
        "notification_timeout_seconds": os.getenv("NOTIFICATION_TIMEOUT_SECONDS"),
        "send_confirmation": os.getenv("SEND_CONFIRMATION"),
        "api_key": os.getenv("API_KEY"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }

    # Filter out None values and convert types
    for key, value in env_overrides.items():
        if value is not None:
            try:
                if key in _INT_FIELDS:
                    value = int(value)
                elif key in _FLOAT_FIELDS:
                    value = float(value)
                elif key in _BOOL_FIELDS:
                    value = value.lower() in ("true", "1", "yes")
            except ValueError as exc:
                raise ConfigurationError(f"Invalid value for {key}: {value!r}") from exc
            config_data[key] = value

    return MonitoringConfig(**config_data)


def get_config() -> MonitoringConfig:
    """Get the global configuration instance."""
    return load_config()
