"""
WasteWatch - Configuration Management
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

    # Database
    database_url: str = "sqlite:///./wastewatch.db"
    db_echo: bool = False
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30

    # Image storage
    image_storage_dir: str = "./uploads"
    max_image_bytes: int = 10 * 1024 * 1024

    # Geocoding (Nominatim)
    geocoding_enabled: bool = False
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "WasteWatch/1.0"
    geocoder_timeout_seconds: float = 5.0

    # Email (SMTP)
    email_notifications_enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None

    # Rewards
    coupon_code_length: int = 8
    coupon_max_attempts: int = 5

    # Report lifecycle
    award_points_min: int = 1
    award_points_max: int = 1000

    # Analytics
    hotspot_min_reports: int = 5
    hotspot_limit: int = 20
    nearby_default_radius_km: float = 5.0
    nearby_max_radius_km: float = 50.0

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
