"""Runtime configuration for the coach server."""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    environment: str = Field(default="development", alias="ENVIRONMENT")
    service_name: str = Field(default="coach-server", alias="SERVICE_NAME")
    service_version: str = Field(default="0.1.0", alias="SERVICE_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")

    # Model provider
    gemini_model_id: str = Field(default="gemini-1.5-flash", alias="GEMINI_MODEL_ID")
    gemini_temperature: float = Field(default=0.7, alias="GEMINI_TEMPERATURE")
    gemini_max_tokens: int = Field(default=2048, alias="GEMINI_MAX_TOKENS")
    google_api_key: Optional[str] = Field(default=None, alias="GOOGLE_API_KEY")
    llm_max_retries: int = Field(default=3, alias="LLM_MAX_RETRIES")
    llm_initial_backoff_sec: float = Field(default=1.0, alias="LLM_INITIAL_BACKOFF_SEC")
    llm_max_backoff_sec: float = Field(default=10.0, alias="LLM_MAX_BACKOFF_SEC")

    # Admission
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window_sec: float = Field(default=60.0, alias="RATE_LIMIT_WINDOW_SEC")
    rate_limit_sweep_interval_sec: float = Field(default=300.0, alias="RATE_LIMIT_SWEEP_INTERVAL_SEC")

    # Cache
    cache_coach_ttl_sec: int = Field(default=600, alias="CACHE_COACH_TTL_SEC")
    cache_plans_ttl_sec: int = Field(default=60, alias="CACHE_PLANS_TTL_SEC")
    cache_sweep_interval_sec: float = Field(default=60.0, alias="CACHE_SWEEP_INTERVAL_SEC")

    # Streaming
    stream_queue_size: int = Field(default=100, alias="STREAM_QUEUE_SIZE")
    stream_timeout_sec: float = Field(default=300.0, alias="STREAM_TIMEOUT_SEC")
    stream_keepalive_sec: float = Field(default=15.0, alias="STREAM_KEEPALIVE_SEC")
    background_max_concurrency: int = Field(default=8, alias="BACKGROUND_MAX_CONCURRENCY")
    tool_confirmation_ttl_sec: int = Field(default=300, alias="TOOL_CONFIRMATION_TTL_SEC")

    # Auth
    auth_mode: Literal["firebase", "shared_secret"] = Field(default="shared_secret", alias="AUTH_MODE")
    auth_project_id: Optional[str] = Field(default=None, alias="AUTH_PROJECT_ID")
    auth_shared_secret: str = Field(default="dev-only-shared-secret-change-me-in-prod", alias="AUTH_SHARED_SECRET")

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]


def reset_settings_cache() -> None:
    """Clear cached settings (primarily for tests)."""

    get_settings.cache_clear()
