"""Application settings parsed from environment variables and defaults."""

import json
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
DEFAULT_CATALOG_BASE_URL = "https://vara-admin-backend.onrender.com"


def _split_list(value: str | list[str] | None, *, lower: bool = False) -> list[str]:
    """Normalize list settings from JSON, CSV, or list inputs."""
    if isinstance(value, list):
        items = [str(item).strip() for item in value if str(item).strip()]
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(item).strip() for item in parsed if str(item).strip()]
        else:
            items = [item.strip() for item in stripped.split(",") if item.strip()]
    else:
        return []
    return [item.lower() for item in items] if lower else items


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "VARA API"
    environment: str = "development"
    api_prefix: str = "/api"

    database_url: str
    test_database_url: Optional[str] = None

    access_token_expires_minutes: int = 30
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"

    log_level: str = "INFO"
    cors_origins: list[str] | str = Field(default_factory=lambda: DEFAULT_CORS_ORIGINS.copy())
    ops_admin_emails: list[str] | str = Field(default_factory=list)
    redis_url: str = "redis://redis:6379/0"
    worker_queue_names: list[str] | str = Field(default_factory=lambda: ["default", "maintenance"])
    health_allowlist: list[str] | str = Field(default_factory=list)

    catalog_base_url: str = DEFAULT_CATALOG_BASE_URL
    catalog_timeout_seconds: float = 10.0
    taxonomy_ttl_seconds: int = 60

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 15.0
    ai_debug: bool = False

    taste_decay_factor: float = 0.95
    taste_decay_cron: str = "0 2 1 * *"
    taste_min_interactions: int = 5
    recommendation_max_per_sub_genre: int = 4
    direct_storage_limit: int = 300

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors_origins(cls, value: str | list[str] | None) -> list[str]:
        """Normalize CORS origins, defaulting to the local frontend."""
        return _split_list(value) or DEFAULT_CORS_ORIGINS.copy()

    @field_validator("worker_queue_names", mode="before")
    @classmethod
    def _split_worker_queue_names(cls, value: str | list[str] | None) -> list[str]:
        """Normalize worker queue names, defaulting to a single queue."""
        return _split_list(value) or ["default"]

    @field_validator("health_allowlist", mode="before")
    @classmethod
    def _split_health_allowlist(cls, value: str | list[str] | None) -> list[str]:
        return _split_list(value)

    @field_validator("ops_admin_emails", mode="before")
    @classmethod
    def _split_ops_admin_emails(cls, value: str | list[str] | None) -> list[str]:
        return _split_list(value, lower=True)

    @field_validator("catalog_base_url")
    @classmethod
    def _strip_catalog_slash(cls, value: str) -> str:
        return value.rstrip("/") or DEFAULT_CATALOG_BASE_URL

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
