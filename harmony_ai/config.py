from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Harmony AI Generation Service"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_PREFIX: str = "/api/ai"

    # Database
    DATABASE_URL: str = "sqlite:///./harmony_ai.db"

    # Shared store for rate limiting and caching (optional)
    REDIS_URL: Optional[str] = None

    # Google Gemini (text)
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta/models"
    GEMINI_MODEL: str = "gemini-pro"
    GEMINI_MAX_TOKENS: int = 1024
    GEMINI_TEMPERATURE: float = 0.8

    # OpenAI (prompt optimization + text)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_ORGANIZATION: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4"
    OPENAI_MAX_TOKENS: int = 1000
    OPENAI_TEMPERATURE: float = 0.7

    # Nano Banana (images)
    NANO_BANANA_API_KEY: Optional[str] = None
    NANO_BANANA_API_URL: str = "https://api.nanobanana.com/v1"
    NANO_BANANA_MODEL: str = "stable-diffusion-xl"
    NANO_BANANA_STEPS: int = 20
    NANO_BANANA_CFG_SCALE: float = 7.0

    # Seedance (images)
    SEEDANCE_API_KEY: Optional[str] = None
    SEEDANCE_API_URL: str = "https://api.seedance.com/v1"
    SEEDANCE_MODEL: str = "midjourney"
    SEEDANCE_QUALITY: str = "standard"

    # Provider calls
    TEXT_TIMEOUT_SEC: float = 15.0
    IMAGE_TIMEOUT_SEC: float = 30.0
    PROVIDER_MAX_RETRIES: int = 2
    PROVIDER_FAILURE_THRESHOLD: int = 5
    PROVIDER_RECOVERY_TIMEOUT_SEC: float = 60.0
    PROVIDER_WORKERS: int = 16

    # Result cache
    CACHE_ENABLED: bool = True
    CACHE_TTL_SEC: int = 3600
    CACHE_MAX_ENTRIES: int = 1000

    # Quotas
    TIER_LIMITS_FILE: Optional[str] = None

    # Observability
    TRACING_ENABLED: bool = False
    TRACING_EXPORTER: str = "console"  # console|none
    SERVICE_NAME: str = "harmony-ai"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
