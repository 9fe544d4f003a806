from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    database_url: str = Field("sqlite:///./hookscheduler.db", alias="DATABASE_URL")
    database_connect_retries: int = Field(10, alias="DATABASE_CONNECT_RETRIES")
    database_connect_retry_delay_seconds: float = Field(3, alias="DATABASE_CONNECT_RETRY_DELAY_SECONDS")

    backend_port: int = Field(8000, alias="BACKEND_PORT")
    backend_version: str = "0.1.0"

    # Scheduler settings
    scheduler_enabled: bool = Field(True, alias="SCHEDULER_ENABLED")
    scheduler_poll_interval_seconds: int = Field(300, alias="SCHEDULER_POLL_INTERVAL_SECONDS")
    # Longest delay handed to a single direct timer (2**31 - 1 ms, ~24.8 days)
    scheduler_max_timer_delay_seconds: float = Field(2147483.647, alias="SCHEDULER_MAX_TIMER_DELAY_SECONDS")
    scheduler_recheck_interval_seconds: float = Field(86400, alias="SCHEDULER_RECHECK_INTERVAL_SECONDS")

    # Webhook delivery settings
    webhook_default_timeout_seconds: int = Field(30, alias="WEBHOOK_DEFAULT_TIMEOUT_SECONDS")
    webhook_user_agent: str = Field("hookscheduler/1.0", alias="WEBHOOK_USER_AGENT")
    webhook_max_retries: int = Field(0, alias="WEBHOOK_MAX_RETRIES")
    webhook_retry_delay_seconds: float = Field(5, alias="WEBHOOK_RETRY_DELAY_SECONDS")
    execution_log_response_limit: int = Field(1000, alias="EXECUTION_LOG_RESPONSE_LIMIT")

    # Execution log housekeeping
    log_retention_days: Optional[int] = Field(None, alias="LOG_RETENTION_DAYS")
    log_cleanup_default_days: int = Field(30, alias="LOG_CLEANUP_DEFAULT_DAYS")

    # Live event stream settings
    sse_heartbeat_seconds: int = Field(30, alias="SSE_HEARTBEAT_SECONDS")
    sse_queue_size: int = Field(100, alias="SSE_QUEUE_SIZE")

    # Owner identification
    auth_enabled: bool = Field(False, alias="AUTH_ENABLED")
    jwt_secret_key: str = Field("change_me", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    default_owner_id: str = Field("default", alias="DEFAULT_OWNER_ID")


@lru_cache
def get_settings() -> Settings:
    return Settings()
