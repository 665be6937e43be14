from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokensmith.logging import get_logger

logger = get_logger(__name__)

# Below this the access/refresh tokens would carry less than 128 bits of entropy.
MIN_TOKEN_BYTES = 16


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token service."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    database_url: str | None = env_field(
        None,
        "DATABASE_URL",
        description="Postgres DSN for the user store; in-memory users when unset",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and allow runtime resets.",
    )
    allow_signup: bool = env_field(True, "ALLOW_SIGNUP")
    access_token_ttl_minutes: int = env_field(
        30, "ACCESS_TOKEN_TTL_MINUTES", description="Access token lifetime in minutes"
    )
    refresh_token_ttl_minutes: int = env_field(
        8 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        description="Refresh token lifetime in minutes",
    )
    token_bytes: int = env_field(
        32,
        "TOKEN_BYTES",
        description="Random bytes per generated token before url-safe encoding",
    )
    store_timeout_seconds: float = env_field(
        2.0,
        "STORE_TIMEOUT_SECONDS",
        description="Deadline for a single credential store round-trip",
    )
    credential_key_prefix: str = env_field("cred", "CREDENTIAL_KEY_PREFIX")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("token_bytes")
    @classmethod
    def _validate_token_bytes(cls, value: int) -> int:
        if value < MIN_TOKEN_BYTES:
            raise ValueError(f"token_bytes must be at least {MIN_TOKEN_BYTES}")
        return value

    @field_validator("access_token_ttl_minutes", "refresh_token_ttl_minutes")
    @classmethod
    def _validate_positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token TTLs must be positive")
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def _validate_store_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("store_timeout_seconds must be positive")
        return value

    @field_validator("database_url")
    @classmethod
    def _blank_database_url(cls, value: str | None) -> str | None:
        return value or None

    @model_validator(mode="after")
    def _refresh_outlives_access(self):
        if self.refresh_token_ttl_minutes <= self.access_token_ttl_minutes:
            raise ValueError(
                "refresh_token_ttl_minutes must be longer than access_token_ttl_minutes"
            )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            use_memory_store=_settings_cache.use_memory_store,
            test_mode=_settings_cache.test_mode,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
