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

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # WhatsApp Cloud API - required from .env
    WHATSAPP_VERIFY_TOKEN: str
    WHATSAPP_TOKEN: str

    # Optional: when set, POST deliveries must carry a valid X-Hub-Signature-256
    WHATSAPP_APP_SECRET: str = ""

    GRAPH_API_BASE: str = "https://graph.facebook.com/v21.0"

    # Upper bound for every outbound call (Graph API and object store)
    HTTP_TIMEOUT_SECONDS: float = 15.0

    # Object store: "filesystem" or "s3"
    STORAGE_BACKEND: str = "filesystem"
    MEDIA_ROOT: str = "./media"

    S3_BUCKET: str = "media"
    S3_ENDPOINT_URL: str = ""
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_REGION: str = "auto"

    # Lifetime of gallery URLs handed out for private objects
    SIGNED_URL_SECONDS: int = 3600


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
