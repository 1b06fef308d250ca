"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Postflow API"
    debug: bool = False
    environment: str = "development"

    # Security
    secret_key: str = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60  # 1 hour
    refresh_token_expire_days: int = 7

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./postflow.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Rate limiting
    rate_limit_requests: int = 100
    rate_limit_period: int = 60  # seconds
    login_rate_limit: str = "5/minute"

    # Platform app credentials
    twitter_client_id: str = ""
    twitter_client_secret: str = ""
    twitter_bearer_token: str = ""
    twitter_redirect_uri: str = "http://localhost:8000/api/social-accounts/twitter/callback"

    instagram_access_token: str = ""  # business account used for discovery lookups
    instagram_account_id: str = ""

    youtube_client_id: str = ""
    youtube_client_secret: str = ""
    youtube_api_key: str = ""

    linkedin_client_id: str = ""
    linkedin_client_secret: str = ""
    linkedin_access_token: str = ""

    facebook_app_id: str = ""
    facebook_app_secret: str = ""

    # External AI analysis service
    ai_service_url: Optional[str] = None
    ai_service_api_key: str = ""
    ai_service_timeout_seconds: float = 15.0

    # Publishing
    publish_max_attempts: int = 3
    publish_backoff_seconds: float = 2.0
    publish_backoff_max_seconds: float = 30.0
    provider_timeout_seconds: float = 10.0
    media_upload_timeout_seconds: float = 300.0
    media_upload_concurrency: int = 2
    scheduler_api_key: str = ""

    # Media storage
    uploads_dir: str = os.getenv("UPLOADS_DIR", "./uploads")
    gcs_bucket: str = ""
    public_base_url: str = "http://localhost:8000"

    # Competitor analysis
    competitor_max_urls: int = 10
    competitor_batch_size: int = 3
    competitor_batch_delay_seconds: float = 2.0
    competitor_cache_ttl_seconds: int = 6 * 60 * 60
    competitor_default_max_posts: int = 50
    competitor_default_time_period_days: int = 30
    competitor_fetch_timeout_seconds: float = 30.0

    # OAuth
    oauth_state_ttl_seconds: int = 600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def is_placeholder(value: Optional[str]) -> bool:
    """True for credentials that are unset or still hold a template value."""
    return not value or "YOUR_" in value


# Validate secret key on startup
settings = get_settings()
if settings.environment == "production" and "SECRET_KEY" not in os.environ:
    raise ValueError(
        "SECRET_KEY must be set in production! "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
