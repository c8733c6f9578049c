from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service settings loaded from environment variables.
    Environment variables win over the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required
    DATABASE_URL: str

    LOG_LEVEL: str = "INFO"

    # WATI messaging API - token is required for outbound sends
    WATI_API_TOKEN: str
    WATI_BASE_URL: str = "https://live-mt-server.wati.io/361402/api/v1"
    WATI_CHANNEL_NUMBER: str = "27772538155"
    WATI_TEMPLATE_NAME: str = "missed_appointment"

    # Collaborator bounds (seconds)
    OUTBOUND_TIMEOUT_SECONDS: float = 15.0
    STORE_TIMEOUT_SECONDS: float = 10.0

    MESSAGES_QUERY_LIMIT: int = 50
    CORS_ORIGINS: str = "*"

    HOST: str = "0.0.0.0"
    PORT: int = 3000

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
