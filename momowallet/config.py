from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./momowallet.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Ingest endpoint HMAC secret; readiness fails while it is empty
    WEBHOOK_SECRET: str = ""

    # Market (ISO country code) selecting the sender allowlist and default currency
    MARKET: str = "GH"

    # Deduplicate reference-less messages by content fingerprint
    DEDUP_FINGERPRINT_FALLBACK: bool = True

    # Background recovery sweep interval, 0 disables it
    RECOVERY_INTERVAL_SECONDS: int = 0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
