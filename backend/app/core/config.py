"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore", # Allow extra env vars without failing
    )

    # App
    app_name: str = "Terratone Relay"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # API
    integration_prefix: str = "/api/integration"
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Smart home source (Home Assistant style /api/states)
    home_assistant_url: Optional[str] = None
    home_assistant_token: Optional[str] = None
    smart_home_source: str = "ha"
    smart_home_platform: str = "home_assistant"
    smart_home_poll_enabled: bool = False
    smart_home_poll_interval_seconds: int = 30
    smart_home_timeout_seconds: float = 10.0
    smart_home_poll_max_attempts: int = 1

    # Forwarding destinations
    heartware_api_url: Optional[str] = None
    terracare_api_url: Optional[str] = None
    forward_max_attempts: int = 3
    forward_backoff_base_seconds: float = 0.5
    forward_timeout_seconds: float = 5.0
    health_timeout_seconds: float = 3.0

    # Rituals engine
    rituals_match_policy: str = "all"  # all | first
    rituals_path: Optional[str] = None

    # Event bus
    bus_history_size: int = 100

    # Partner collaborators
    sofie_map_url: str = "http://localhost:8002"
    terracare_rpc_url: str = "http://localhost:8545"
    terracare_chain_id: int = 1337


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
