# /backend/loginguard/core/config.py

import json
import logging
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )

    # --- Environment & Debug ---
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="APP_ENV"
    )
    DEBUG: bool = Field(default=False, validation_alias=AliasChoices("DEBUG_MODE", "DEBUG"))
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )

    # --- Core Application Settings ---
    APP_NAME: str = Field(default="LoginGuard", validation_alias="APP_NAME")
    APP_VERSION: str = Field(default="0.1.0", validation_alias="APP_VERSION")
    APP_DESCRIPTION: str = Field(
        default="Login-attempt ledger, account lockout and security audit trail.",
        validation_alias="APP_DESCRIPTION",
    )
    API_V1_STR: str = Field(default="/api/v1", validation_alias="API_V1_STR")

    # --- Database Settings ---
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./loginguard.db",
        description="Async SQLAlchemy URL (postgresql+asyncpg://... in production)",
        validation_alias=AliasChoices("DATABASE_URL", "ASYNC_SQLALCHEMY_DATABASE_URL"),
    )
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # --- Account Lockout Settings ---
    LOGIN_MAX_ATTEMPTS: int = Field(
        default=5,
        ge=1,
        description="Failed attempts within the window that lock an (identity, ip) pair",
        validation_alias="LOGIN_MAX_ATTEMPTS",
    )
    LOGIN_ATTEMPT_WINDOW_MINUTES: int = Field(
        default=15,
        ge=1,
        description="Trailing window (minutes) over which failed attempts are counted",
        validation_alias="LOGIN_ATTEMPT_WINDOW_MINUTES",
    )
    LOCKOUT_FAIL_CLOSED: bool = Field(
        default=False,
        description="Deny logins when the attempt ledger cannot be read",
        validation_alias="LOCKOUT_FAIL_CLOSED",
    )
    LOGIN_ATTEMPT_RETENTION_DAYS: int = Field(
        default=90, ge=1, validation_alias="LOGIN_ATTEMPT_RETENTION_DAYS"
    )

    # --- Rate Limiting (auth profile) ---
    AUTH_RATE_LIMIT: str = Field(default="5/5minute", validation_alias="AUTH_RATE_LIMIT")
    RATE_LIMIT_STORAGE_URI: str = Field(
        default="memory://", validation_alias="RATE_LIMIT_STORAGE_URI"
    )

    # --- Suspicious Activity Heuristics ---
    SUSPICIOUS_FAILURE_THRESHOLD: int = Field(
        default=5, validation_alias="SUSPICIOUS_FAILURE_THRESHOLD"
    )
    SUSPICIOUS_FAILURE_WINDOW_MINUTES: int = Field(
        default=15, validation_alias="SUSPICIOUS_FAILURE_WINDOW_MINUTES"
    )
    SUSPICIOUS_MAX_DISTINCT_IPS: int = Field(
        default=3, validation_alias="SUSPICIOUS_MAX_DISTINCT_IPS"
    )
    SUSPICIOUS_MAX_DISTINCT_IDENTITIES: int = Field(
        default=10, validation_alias="SUSPICIOUS_MAX_DISTINCT_IDENTITIES"
    )
    SUSPICIOUS_FANOUT_WINDOW_MINUTES: int = Field(
        default=60, validation_alias="SUSPICIOUS_FANOUT_WINDOW_MINUTES"
    )
    KNOWN_IP_LOOKBACK_DAYS: int = Field(default=7, validation_alias="KNOWN_IP_LOOKBACK_DAYS")
    KNOWN_IP_SAMPLE_SIZE: int = Field(default=20, validation_alias="KNOWN_IP_SAMPLE_SIZE")

    # --- Identity Provider (GoTrue / Supabase Auth) ---
    IDENTITY_PROVIDER_URL: str = Field(
        default="http://localhost:9999",
        validation_alias=AliasChoices("IDENTITY_PROVIDER_URL", "SUPABASE_URL"),
    )
    IDENTITY_PROVIDER_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("IDENTITY_PROVIDER_API_KEY", "SUPABASE_ANON_KEY"),
    )
    IDENTITY_PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=10.0, gt=0, validation_alias="IDENTITY_PROVIDER_TIMEOUT_SECONDS"
    )

    # --- Perimeter / Proxy ---
    TRUSTED_PROXY_HEADERS: bool = Field(default=True, validation_alias="TRUSTED_PROXY_HEADERS")

    # --- Security Logging & Alerting ---
    SECURITY_LOG_PATH: str | None = Field(default=None, validation_alias="SECURITY_LOG_PATH")
    SECURITY_ALERT_WEBHOOK_URL: str | None = Field(
        default=None, validation_alias="SECURITY_ALERT_WEBHOOK_URL"
    )

    # --- Celery & Redis Settings ---
    CELERY_BROKER_URL: str = Field(
        default="redis://localhost:6379/0", validation_alias="CELERY_BROKER_URL"
    )
    CELERY_RESULT_BACKEND: str = Field(
        default="redis://localhost:6379/0", validation_alias="CELERY_RESULT_BACKEND"
    )
    TIMEZONE: str = Field(default="UTC", validation_alias="CELERY_TIMEZONE")

    # --- CORS ---
    backend_cors_origins_env_str: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BACKEND_CORS_ORIGINS", "BACKEND_CORS_ORIGINS_ENV"),
    )

    @field_validator("AUTH_RATE_LIMIT")
    @classmethod
    def validate_rate_limit(cls, v: str) -> str:
        from limits import parse

        try:
            parse(v)
        except ValueError as e:
            raise ValueError(f"AUTH_RATE_LIMIT is not a valid rate limit string: {v!r}") from e
        return v

    @property
    def BACKEND_CORS_ORIGINS(self) -> list[str]:
        """Parse a JSON array or comma-separated list of origins."""
        raw = (self.backend_cors_origins_env_str or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(item).strip() for item in parsed if str(item).strip()]
            except json.JSONDecodeError:
                logger.warning("BACKEND_CORS_ORIGINS is not valid JSON; treating as CSV.")
        return [item.strip() for item in raw.strip("[]").split(",") if item.strip()]

    @property
    def LOCKOUT_MESSAGE(self) -> str:
        return (
            "Account temporarily locked due to multiple failed login attempts. "
            f"Please try again in {self.LOGIN_ATTEMPT_WINDOW_MINUTES} minutes."
        )


settings = Settings()
