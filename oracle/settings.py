from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        enable_decoding=False,
    )

    ENV: str = "dev"
    DATABASE_URL: str = "sqlite:///./oracle.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    DB_STATEMENT_TIMEOUT_SECONDS: float = 30.0

    CRON_SECRET: str | None = None
    ADMIN_API_KEY: str | None = None

    OPENAI_API_KEY: str | None = None
    LLM_API_BASE: str = "https://api.openai.com/v1/chat/completions"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: int = 30
    LLM_MAX_RETRIES: int = 2
    LLM_WEB_SEARCH: bool = False
    LLM_CIRCUIT_MAX_FAILURES: int = 5
    LLM_CIRCUIT_RESET_SECONDS: int = 300
    EXTERNAL_MAX_CONCURRENT_LLM_CALLS: int | None = 4

    RESOLUTION_MAX_RETRIES: int = 5
    RESOLUTION_INTERVAL_SECONDS: int = 3600
    RESOLUTION_LOCK_TTL_SECONDS: int = 900
    POLL_DEFAULT_RESOLUTION_HOURS: int = 24
    POLL_DEFAULT_XP_STAKE: int = 10

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    HTTPX_SLOW_REQUEST_THRESHOLD_SECONDS: float = 5.0

    @field_validator("CRON_SECRET", "ADMIN_API_KEY", "OPENAI_API_KEY", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("EXTERNAL_MAX_CONCURRENT_LLM_CALLS", mode="before")
    @classmethod
    def _none_str_to_none(cls, value):
        if value is None:
            return None
        if isinstance(value, str) and value.strip().lower() in {"", "none", "null"}:
            return None
        return value

settings = Settings()
