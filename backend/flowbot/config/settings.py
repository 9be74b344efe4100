# /flowbot/config/settings.py

import logging
from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Deployment
    environment: str = "production"
    log_level: str = "INFO"
    api_version: str = "v1"
    api_key: Optional[str] = None
    cors_allowed_origins: str = ""  # comma-separated

    # Locale defaults for new conversations
    default_language: str = "en"
    default_timezone: str = "Asia/Kolkata"

    # Engine behaviour
    flow_timeout_seconds: int = 30 * 60
    conversation_idle_seconds: int = 5 * 60
    flow_cache_ttl_seconds: float = 60.0
    max_node_hops: int = 50

    # Standalone mode: JSON file of {tenantId: [flow, ...]} loaded at startup
    flows_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="FLOWBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------------- Validators ---------------- #

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("environment")
    @classmethod
    def environment_must_be_known(cls, v: str) -> str:
        env = v.lower()
        if env not in {"production", "staging", "development", "test"}:
            raise ValueError(f"Unknown environment: {v}")
        return env

    @field_validator(
        "flow_timeout_seconds",
        "conversation_idle_seconds",
        "flow_cache_ttl_seconds",
        "max_node_hops",
    )
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


settings = Settings()
