from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Certificate Repository Sync Engine"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"
    LOGGING_CONFIG_PATH: str = ""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./certsync.db"
    DATABASE_ECHO: bool = False

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Workflow listeners
    START_LISTENERS_ON_STARTUP: bool = True
    LISTENER_MAX_RETRIES: int = 3
    LISTENER_RETRY_DELAY_SECONDS: float = 1.0
    LISTENER_FAILED_EVENTS_LIMIT: int = 100

    # Health monitoring
    START_HEALTH_MONITOR_ON_STARTUP: bool = True
    HEALTH_CHECK_INTERVAL_SECONDS: float = 300.0
    HEALTH_PROBE_TIMEOUT_SECONDS: float = 10.0
    HEALTH_STATS_CACHE_SECONDS: float = 60.0
    RECORD_STORE_LATENCY_WARNING_MS: float = 1000.0
    HEALTH_FEED_BUFFER: int = 16

    # Exclusive operations
    LOCK_LEASE_SECONDS: int = 300

    # System bootstrap
    BOOTSTRAP_ON_STARTUP: bool = True
    INITIAL_ADMIN_EMAIL: str = "admin@example.com"
    INITIAL_ADMIN_NAME: str = "System Administrator"

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @property
    def redis_url(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
