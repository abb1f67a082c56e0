from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Every value has a default so the mock runs with zero configuration.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./smssink.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_RETENTION_DAYS: int = 7

    # API key written to the credentials table on first run
    DEFAULT_API_KEY: str = "test-token"

    # Logs raw request bodies when true (can also be toggled at runtime)
    SMSSINK_DEBUG: bool = False

    # Status callback delivery
    WEBHOOK_TIMEOUT_SECONDS: float = 5.0

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 23456


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
