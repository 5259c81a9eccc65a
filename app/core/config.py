from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global configuration for environment variables."""

    APP_NAME: str = "Coreframe Chat"
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Server config
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Postgres
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "coreframe"
    CREATE_TABLES: bool = False

    # Redis (usage counters)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str | None = None
    REDIS_SSL: bool = False

    # Auth
    JWT_SUPER_SECRET: str = "dev-secret"

    # Usage limits, reset on UTC day rollover
    NON_AUTH_DAILY_MESSAGE_LIMIT: int = 5
    AUTH_DAILY_MESSAGE_LIMIT: int = 1000
    DAILY_LIMIT_PRO_MODELS: int = 500
    FREE_MODEL_IDS: List[str] = [
        "llama-3.3-70b-versatile",
        "llama-3.1-8b-instant",
        "gpt-4o-mini",
    ]

    # Completion engine
    DEFAULT_MODEL: str = "gpt-4o-mini"
    SYSTEM_PROMPT_DEFAULT: str = (
        "You are Coreframe, a thoughtful and helpful assistant. "
        "Answer clearly and keep track of what the user tells you."
    )
    CHAT_STREAM_TIMEOUT_SECONDS: float = 60.0
    AGENT_MAX_RETRIES: int = 2

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")


settings = Settings()
