"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/weather_cards.sqlite"

    # Gemini image generation
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-3-pro-image-preview"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_USE_SEARCH: bool = True
    GEMINI_TIMEOUT: float = 300.0
    PROMPT_INCLUDE_WEATHER: bool = True

    # Weather (Open-Meteo)
    GEOCODING_URL: str = "https://geocoding-api.open-meteo.com/v1/search"
    FORECAST_URL: str = "https://api.open-meteo.com/v1/forecast"
    WEATHER_LANGUAGE: str = "zh"
    WEATHER_PREFERRED_COUNTRY: str = "CN"
    WEATHER_TIMEOUT: float = 15.0

    # Blob storage
    BLOB_ROOT: str = "./data/blobs"
    BLOB_KEY_PREFIX: str = "cards"

    # Step retry policies
    IMAGE_RETRY_LIMIT: int = 1
    IMAGE_RETRY_DELAY: float = 10.0
    IMAGE_RETRY_BACKOFF: str = "linear"
    UPLOAD_RETRY_LIMIT: int = 2
    UPLOAD_RETRY_DELAY: float = 2.0
    UPLOAD_RETRY_BACKOFF: str = "exponential"

    # Scheduler / worker
    WORKER_ENABLED: bool = True
    TIMEZONE: str = "Asia/Shanghai"
    DAILY_SCHEDULE: str = "08:00"  # HH:MM in TIMEZONE
    SCHEDULER_ENABLED: bool = True
    RUN_ON_START: bool = False
    RESUME_INTERRUPTED_RUNS: bool = True
    WORKER_POLL_INTERVAL: int = 30
    STALE_RUN_TIMEOUT: int = 1800  # seconds

    # Access control
    ACCESS_CODE: str = ""
    INTERNAL_API_KEY: str = ""
    IMAGE_SECRET: str = ""
    IMAGE_TOKEN_TTL: int = 86_400
    INTERNAL_IMAGE_TOKEN_TTL: int = 7 * 86_400

    # Rate limiting
    RATE_LIMIT_WINDOW: int = 60
    RATE_LIMIT_DEFAULT: int = 60
    RATE_LIMIT_CARDS: int = 30
    RATE_LIMIT_IMAGES: int = 200
    REDIS_URL: str = ""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
