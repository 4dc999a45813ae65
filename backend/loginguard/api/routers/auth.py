# backend/loginguard/api/routers/auth.py
"""
Authentication endpoints.

Provides:
- POST /auth/login: credential login through the login orchestrator
- POST /auth/mfa/enroll, /auth/mfa/verify: TOTP pass-through to the identity provider
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from limits import parse
from sqlalchemy.ext.asyncio import AsyncSession

from loginguard.core.auth import (
    get_access_token,
    get_current_subject,
    get_identity_provider,
    get_login_orchestrator,
)
from loginguard.core.config import settings
from loginguard.db.session import get_async_session
from loginguard.schemas.auth import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MfaEnrollRequest,
    MfaEnrollResponse,
    MfaVerifyRequest,
)
from loginguard.schemas.security_event import MfaMetadata, SecurityEventType
from loginguard.services import event_recorder
from loginguard.services.identity_provider import IdentityProvider, IdentityProviderError
from loginguard.services.login_orchestrator import LoginOrchestrator, LoginOutcome, LoginResult

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["Auth - Authentication"])

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
RATE_LIMITED_MESSAGE = "Too many login attempts. Please try again later."
INTERNAL_ERROR_MESSAGE = "An error occurred during login"


def _retry_after_seconds(result: LoginResult) -> int:
    if result.retry_after:
        return result.retry_after
    if result.outcome == LoginOutcome.LOCKED:
        return settings.LOGIN_ATTEMPT_WINDOW_MINUTES * 60
    return int(parse(settings.AUTH_RATE_LIMIT).get_expiry())


def login_result_to_response(result: LoginResult) -> JSONResponse:
    """Map a login outcome to its HTTP status and fixed error body."""
    if result.outcome == LoginOutcome.SUCCESS:
        body = LoginResponse(success=True, subject_id=result.subject_id, session=result.session)
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump())

    if result.outcome == LoginOutcome.INVALID_CREDENTIALS:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=ErrorResponse(error=INVALID_CREDENTIALS_MESSAGE).model_dump(),
        )

    if result.outcome in (LoginOutcome.RATE_LIMITED, LoginOutcome.LOCKED):
        if result.outcome == LoginOutcome.LOCKED:
            message = result.message or settings.LOCKOUT_MESSAGE
        else:
            message = RATE_LIMITED_MESSAGE
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=ErrorResponse(error=message).model_dump(),
            headers={"Retry-After": str(_retry_after_seconds(result))},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=INTERNAL_ERROR_MESSAGE).model_dump(),
    )


@auth_router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Log in with identity and credential",
)
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_async_session),
    orchestrator: LoginOrchestrator = Depends(get_login_orchestrator),
):
    result = await orchestrator.authenticate(db, request, payload.identity, payload.credential)
    return login_result_to_response(result)


@auth_router.post("/mfa/enroll", response_model=MfaEnrollResponse, summary="Start TOTP enrollment")
async def mfa_enroll(
    payload: MfaEnrollRequest,
    access_token: str = Depends(get_access_token),
    subject_id: str = Depends(get_current_subject),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
):
    try:
        factor = await identity_provider.enroll_mfa(access_token, payload.friendly_name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except IdentityProviderError as e:
        logger.error(f"MFA enrollment failed for {subject_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from e

    totp = factor.get("totp") or {}
    return MfaEnrollResponse(
        factor_id=str(factor.get("id")),
        factor_type=factor.get("type") or factor.get("factor_type") or "totp",
        qr_code=totp.get("qr_code"),
        secret=totp.get("secret"),
        uri=totp.get("uri"),
    )


@auth_router.post("/mfa/verify", summary="Verify a TOTP code and activate the factor")
async def mfa_verify(
    payload: MfaVerifyRequest,
    access_token: str = Depends(get_access_token),
    subject_id: str = Depends(get_current_subject),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_session),
):
    try:
        await identity_provider.verify_mfa_challenge(access_token, payload.factor_id, payload.code)
    except ValueError as e:
        logger.info(f"MFA verification rejected for {subject_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid verification code"
        ) from e
    except IdentityProviderError as e:
        logger.error(f"MFA verification failed for {subject_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from e

    result = await event_recorder.record_event(
        db,
        subject_id,
        SecurityEventType.MFA_ENABLED,
        MfaMetadata(factor_id=payload.factor_id),
    )
    if not result.ok:
        logger.warning(f"MFA enabled event not stored for {subject_id}: {result.error}")
    return {"success": True}
