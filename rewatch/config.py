from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Persistence
    STATE_PATH: str = "/data/rewatch.json"
    STORE_BACKEND: Literal["json", "memory"] = "json"

    # Retention
    MAINTENANCE_INTERVAL_SECONDS: int = 3600  # 0 disables the periodic sweep
    PROGRESS_RETENTION_MONTHS: int = 6
    PROGRESS_COMPLETION_THRESHOLD: float = 95.0
    TELEMETRY_MAX_ENTRIES: int = 200
    DEFAULT_TELEMETRY_RETENTION_HOURS: int = 24

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_HOST: str = "0.0.0.0"
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
