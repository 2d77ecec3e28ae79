"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration (the BaaS Postgres instance, read-only views)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="postgres")
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=5)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=1800)  # 30 minutes

    # Supabase JWT verification - REQUIRED
    # The project's JWT secret (Settings -> API in the Supabase dashboard).
    SUPABASE_JWT_SECRET: str = Field(
        default=...,  # Required - no default
        description="HS256 secret used by the auth service to sign access tokens."
    )
    SUPABASE_JWT_AUDIENCE: str = Field(default="authenticated")

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Insights pipeline
    INSIGHTS_DEFAULT_DAYS: int = Field(default=30, ge=1)
    INSIGHTS_MAX_DAYS: int = Field(default=365, ge=1)
    # IANA zone used for hour-of-day bucketing and weekday/time evidence lines.
    INSIGHTS_TIMEZONE: str = Field(default="UTC")
    SPOTIFY_SEARCH_BASE_URL: str = Field(default="https://open.spotify.com/search/")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    # e.g., "https://soundmind.app,https://www.soundmind.app"
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions


# Global settings instance
settings = Settings()
