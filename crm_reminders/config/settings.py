from typing import List, Literal, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "CRM Reminders"
    VERSION: str = "1.0.0"
    API_PREFIX: str = ""
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    LOG_CONFIG_PATH: str = "logging_config.json"

    # Database
    DATABASE_URL: str = "sqlite:///./crm_reminders.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Cron trigger
    CRON_SECRET: str = ""

    # Outbound email (Resend HTTP API)
    RESEND_API_KEY: str = ""
    FROM_EMAIL: str = ""
    EMAIL_API_URL: str = "https://api.resend.com/emails"
    EMAIL_TIMEOUT_SECONDS: float = 10.0
    FRONTEND_URL: str = ""

    # Reminder scheduling
    DEFAULT_TIMEZONE: str = "Africa/Harare"
    DEFAULT_REMINDER_LEAD_MINUTES: int = 5
    REMINDER_HORIZON_DAYS: int = 2
    REMINDER_CLAIM_TTL_MINUTES: int = 15
    # None inspects the follow_ups schema once; False is ignored on a migrated table
    REMINDER_SUPPORTS_CLAIMING: Optional[bool] = None
    REMINDER_INTERVAL_SECONDS: int = 60

    # Daily digest
    DIGEST_DEFAULT_TIME: str = "08:00"
    DIGEST_WINDOW_MINUTES: int = 5
    DIGEST_DEDUP_BACKEND: Literal["memory", "database"] = "memory"

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("REMINDER_CLAIM_TTL_MINUTES", "REMINDER_HORIZON_DAYS")
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("DIGEST_WINDOW_MINUTES")
    def must_not_be_negative(cls, v: int) -> int:
        # 0 is an exact-minute window
        if v < 0:
            raise ValueError("must be zero or greater")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
