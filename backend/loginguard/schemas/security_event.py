# backend/loginguard/schemas/security_event.py
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class SecurityEventType(str, Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DATA_EXPORT = "data_export"
    DATA_DELETION = "data_deletion"
    PAYMENT_CHANGE = "payment_change"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


# --- Metadata shapes, one per event family ---


class EventMetadata(BaseModel):
    """Generic fallback: any keys are kept."""

    model_config = ConfigDict(extra="allow")

    anonymized: bool | None = None


class LoginFailureMetadata(EventMetadata):
    email: str | None = None
    reason: str | None = None
    error: str | None = None
    correlation_id: str | None = None


class LoginSuccessMetadata(EventMetadata):
    method: str = "password"
    mfa_used: bool = False
    country: str | None = None


class AccountLockedMetadata(EventMetadata):
    email: str | None = None
    reason: str = "Too many failed attempts"
    failures: int | None = None


class SuspiciousActivityMetadata(EventMetadata):
    reasons: list[str] = Field(default_factory=list)
    email: str | None = None
    scope: str | None = None  # "subject" | "ip"


class RateLimitMetadata(EventMetadata):
    endpoint: str | None = None
    limit: str | None = None


class MfaMetadata(EventMetadata):
    factor_id: str | None = None
    factor_type: str | None = "totp"


class DataExportMetadata(EventMetadata):
    event_count: int | None = None
    attempt_count: int | None = None


class DataDeletionMetadata(EventMetadata):
    reason: str | None = None
    rows_affected: int | None = None


EVENT_METADATA_MODELS: dict[SecurityEventType, type[EventMetadata]] = {
    SecurityEventType.LOGIN_FAILURE: LoginFailureMetadata,
    SecurityEventType.LOGIN_SUCCESS: LoginSuccessMetadata,
    SecurityEventType.ACCOUNT_LOCKED: AccountLockedMetadata,
    SecurityEventType.SUSPICIOUS_ACTIVITY: SuspiciousActivityMetadata,
    SecurityEventType.RATE_LIMIT_EXCEEDED: RateLimitMetadata,
    SecurityEventType.MFA_ENABLED: MfaMetadata,
    SecurityEventType.MFA_DISABLED: MfaMetadata,
    SecurityEventType.DATA_EXPORT: DataExportMetadata,
    SecurityEventType.DATA_DELETION: DataDeletionMetadata,
}


def metadata_model_for(event_type: SecurityEventType) -> type[EventMetadata]:
    return EVENT_METADATA_MODELS.get(event_type, EventMetadata)


# --- Read schemas ---


class SecurityEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    subject_id: str | None
    event_type: str
    metadata: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("event_metadata", "metadata")
    )
    origin_ip: str | None
    user_agent: str | None
    occurred_at: datetime


class LoginAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    identity: str
    origin_ip: str
    user_agent: str | None
    succeeded: bool
    attempted_at: datetime


class SecurityDataExport(BaseModel):
    subject_id: str
    exported_at: datetime
    security_events: list[SecurityEventRead]
    login_attempts: list[LoginAttemptRead]


class DataDeletionRequest(BaseModel):
    """Optional password re-confirmation before personal data is anonymized."""

    confirm_password: str | None = Field(default=None, max_length=1024)


class DataDeletionResponse(BaseModel):
    success: bool
    anonymized_events: int
