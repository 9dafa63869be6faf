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

    LOG_LEVEL: str = "INFO"

    # Snapshot database used to carry the store across restarts
    DATABASE_URL: str = "sqlite:///./message_board.db"
    SNAPSHOT_ENABLED: bool = True

    # Listing defaults
    DEFAULT_PAGE_LIMIT: int = 10

    # Header carrying the already-authenticated caller identity
    PRINCIPAL_HEADER: str = "X-Principal"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
