from __future__ import annotations

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    SUPABASE_URL: AnyUrl | None = None
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    APP_ENV: str = "local"
    LOG_LEVEL: str = "INFO"
    FRONTEND_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:8081", "http://localhost:19006"],
    )

    # Providers
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_EMBEDDING_MODEL: str = "text-embedding-004"
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_VISION_MODEL: str = "gpt-4o"
    PROVIDER_MAX_ATTEMPTS: int = 2
    PROVIDER_BACKOFF_SECONDS: float = 0.0

    # Fetching
    SCRAPER_API_KEY: str = ""
    FETCH_TIMEOUT_SECONDS: float = 15.0

    # Cache resolution
    SIMILARITY_THRESHOLD: float = 0.5
    SIMILARITY_FALLBACK_THRESHOLD: float = 0.35
    MATCH_COUNT: int = 5

    # Extraction limits
    MIN_INPUT_LENGTH: int = 5
    MIN_EXTRACTED_TEXT_CHARS: int = 50
    MAX_IMAGE_SIZE_MB: int = 10
    MAX_IMAGE_PAGES: int = 10


settings = Settings()
