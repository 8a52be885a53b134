
from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="", extra="ignore")

    # Time-tracking API
    API_BASE_URL: str = "http://localhost:8000/api/v1"
    API_TOKEN: str | None = None  # do not commit
    HTTP_TIMEOUT: float = 20.0
    HTTP_MAX_RETRIES: int = 3

    # Timer scheduling
    TIMER_TICK_SECONDS: int = 1
    TIMER_RESYNC_SECONDS: int = 60
    TIMER_CACHE_PATH: str = ".timeops/running_timer.json"

    # Server
    CORS_ORIGINS: str = "http://localhost:3000"

    # Observability
    LOG_JSON: bool = False
    METRICS_ENABLED: bool = False

settings = Settings()
