from __future__ import annotations

import logging

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SHOPIFY_APP_API_SECRET: str
    SHOPIFY_APP_BASE_URL: AnyHttpUrl
    SHOPIFY_INTERNAL_API_TOKEN: str
    SHOPIFY_APP_DB_URL: str = "sqlite:///./mup_app.db"
    SHOPIFY_ADMIN_API_VERSION: str = "2026-01"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    MUP_SETTINGS_CACHE_TTL_SECONDS: float = Field(default=30.0, ge=0)
    MUP_HOLD_DELAY_SECONDS: int = Field(default=60, ge=0)
    MUP_HOLD_REASON: str = "OTHER"
    MUP_OPS_ALERT_WEBHOOK_URL: AnyHttpUrl | None = None

    TEMPORAL_ADDRESS: str = "localhost:7233"
    TEMPORAL_NAMESPACE: str = "default"
    TEMPORAL_TASK_QUEUE: str = "mup-compliance"

    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not isinstance(logging.getLevelName(normalized), int):
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got {value!r}")
        return normalized

    @field_validator("MUP_HOLD_REASON")
    @classmethod
    def validate_hold_reason(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError("MUP_HOLD_REASON cannot be empty")
        return normalized

    @property
    def app_base_url(self) -> str:
        return str(self.SHOPIFY_APP_BASE_URL).rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
