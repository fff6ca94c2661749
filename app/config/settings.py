from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "UAR Batch Service"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite:///./uar_batch.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Business calendar
    TIMEZONE: str = "Asia/Jakarta"
    UAR_DAILY_TICK_HOUR: int = 8
    UAR_DAILY_TICK_MINUTE: int = 0

    # Notification dispatch
    NOTIFICATION_BATCH_SIZE: int = 50
    # 1 keeps FAILED terminal; anything higher re-queues failed sends with backoff
    NOTIFICATION_MAX_ATTEMPTS: int = 1
    NOTIFICATION_RETRY_BASE_SECONDS: int = 60
    NOTIFICATION_RETRY_MAX_SECONDS: int = 600
    NOTIFICATION_TEMPLATE_LOCALE: str = "en-US"

    # Workflow endpoint (fallbacks when system config rows are missing)
    WORKFLOW_URL: str = ""
    DEFAULT_CC_EMAIL: str = ""
    WORKFLOW_TIMEOUT_SECONDS: float = 30.0

    # UAR PIC upstream sources
    UAR_PIC_SOURCE_URLS: Union[str, List[str]] = (
        "http://localhost:9001/uar-pic,"
        "http://localhost:9002/uar-pic,"
        "http://localhost:9003/uar-pic,"
        "http://localhost:9004/uar-pic,"
        "http://localhost:9005/uar-pic"
    )
    UAR_PIC_SOURCE_TIMEOUT_SECONDS: float = 30.0
    UAR_SYNC_SCHEDULE_DELAY_SECONDS: float = 0.3

    @field_validator("ALLOWED_HOSTS", "UAR_PIC_SOURCE_URLS", mode="before")
    def assemble_list(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
