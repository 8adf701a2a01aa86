"""
ADL Contributions - Configuration Management
Centralized configuration using pydantic-settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Fraud verification thresholds
    submission_gps_match_threshold_km: float = 1.0
    ip_photo_match_km: float = 50.0
    max_submission_image_bytes: int = 8 * 1024 * 1024

    # IP geolocation lookup
    ip_geolocation_url: str = "https://ipapi.co/{ip}/json/"
    ip_lookup_timeout_ms: int = 3000

    # Admin forensics (remote EXIF recovery)
    admin_forensics_fetch_timeout_ms: int = 4000
    admin_forensics_max_image_bytes: int = 8 * 1024 * 1024
    admin_forensics_lookup_cap: int = 25

    # Contribution rewards
    base_event_xp: int = 5

    # Storage
    data_store_driver: Optional[str] = None  # "postgres" or "memory"
    database_url: Optional[str] = None
    postgres_pool_max: int = 5
    postgres_query_timeout_ms: int = 10000

    # Photo storage
    photo_storage_dir: str = "data/photos"
    photo_base_url: str = "/photos"

    # Offline client
    api_base_url: str = "http://localhost:8000"
    offline_queue_path: str = "data/offline_queue.sqlite3"
    sync_request_timeout_ms: int = 15000

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Shared secret the upstream session proxy sends with identity headers
    auth_proxy_secret: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def resolved_store_driver(self) -> str:
        """Storage driver, falling back to postgres when a URL is configured."""
        configured = (self.data_store_driver or "").strip().lower()
        if configured in ("postgres", "memory"):
            return configured
        return "postgres" if self.database_url else "memory"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
