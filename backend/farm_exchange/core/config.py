"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Farm Exchange"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/farm_exchange.db"

    # Reservation serialization
    RESERVATION_LOCK_TIMEOUT: float = 5.0  # seconds to wait for a harvest's lock
    RESERVATION_MAX_RETRIES: int = 3  # internal retries on Busy/Conflict
    RESERVATION_RETRY_DELAY: float = 0.05  # seconds, linear backoff base

    # Listing pages
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # CORS - comma-separated string, split when used
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    @field_validator("RESERVATION_LOCK_TIMEOUT")
    @classmethod
    def validate_lock_timeout(cls, v):
        """A reservation must never block indefinitely."""
        if v <= 0:
            raise ValueError("RESERVATION_LOCK_TIMEOUT must be positive")
        return v

    @field_validator("RESERVATION_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v):
        if v < 0:
            raise ValueError("RESERVATION_MAX_RETRIES cannot be negative")
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
