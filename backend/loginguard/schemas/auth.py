# backend/loginguard/schemas/auth.py
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator


class LoginRequest(BaseModel):
    """
    Credentials posted to the login endpoint.

    Accepts both the `identity`/`credential` names and the form-style
    `email`/`password` names.
    """

    identity: str = Field(
        ..., min_length=1, max_length=255, validation_alias=AliasChoices("identity", "email")
    )
    credential: str = Field(
        ..., min_length=1, max_length=1024, validation_alias=AliasChoices("credential", "password")
    )

    @field_validator("identity")
    @classmethod
    def normalize_identity(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("identity must not be blank")
        return v


class LoginResponse(BaseModel):
    success: bool = True
    subject_id: str | None = None
    session: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: str


class MfaEnrollRequest(BaseModel):
    friendly_name: str | None = Field(default=None, max_length=100)


class MfaEnrollResponse(BaseModel):
    factor_id: str
    factor_type: str = "totp"
    qr_code: str | None = None
    secret: str | None = None
    uri: str | None = None


class MfaVerifyRequest(BaseModel):
    factor_id: str = Field(..., min_length=1, validation_alias=AliasChoices("factor_id", "factorId"))
    code: str = Field(..., min_length=6, max_length=10)
