# backend/loginguard/api/routers/security.py
"""
Subject self-service security endpoints.

A subject only ever sees its own rows: every query is filtered by the
authenticated subject id resolved from the bearer token.
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loginguard.core.auth import get_current_subject, get_current_user, get_identity_provider
from loginguard.db.session import get_async_session
from loginguard.schemas.security_event import (
    DataDeletionMetadata,
    DataDeletionRequest,
    DataDeletionResponse,
    DataExportMetadata,
    LoginAttemptRead,
    SecurityDataExport,
    SecurityEventRead,
    SecurityEventType,
)
from loginguard.services import attempt_ledger, event_recorder
from loginguard.services.identity_provider import IdentityProvider, IdentityProviderError

logger = logging.getLogger(__name__)

security_router = APIRouter(prefix="/security", tags=["Security - Audit Trail"])

EXPORT_EVENT_LIMIT = 100
EXPORT_ATTEMPT_LIMIT = 100


def _ledger_identity(user: dict) -> str | None:
    # The attempt ledger is keyed by the login identity (email), not the subject id.
    email = user.get("email")
    return attempt_ledger.normalize_identity(email) if email else None


@security_router.get("/events", response_model=list[SecurityEventRead])
async def list_my_security_events(
    limit: int = Query(50, ge=1, le=100),
    subject_id: str = Depends(get_current_subject),
    db: AsyncSession = Depends(get_async_session),
):
    events = await event_recorder.query_events(db, subject_id, limit=limit)
    return [SecurityEventRead.model_validate(e) for e in events]


@security_router.get("/login-history", response_model=list[LoginAttemptRead])
async def my_login_history(
    limit: int = Query(10, ge=1, le=50),
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    identity = _ledger_identity(user)
    if not identity:
        return []
    attempts = await attempt_ledger.get_history(db, identity, limit=limit)
    return [LoginAttemptRead.model_validate(a) for a in attempts]


@security_router.post("/export", response_model=SecurityDataExport)
async def export_my_security_data(
    user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
):
    """GDPR export of the subject's own security events and login attempts."""
    subject_id = str(user["id"])
    identity = _ledger_identity(user)
    try:
        events = await event_recorder.query_events(db, subject_id, limit=EXPORT_EVENT_LIMIT)
        attempts = (
            await attempt_ledger.get_history(db, identity, limit=EXPORT_ATTEMPT_LIMIT)
            if identity
            else []
        )
    except Exception as e:
        logger.error(f"Security data export failed for {subject_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to export data"
        ) from e

    export = SecurityDataExport(
        subject_id=subject_id,
        exported_at=datetime.now(UTC),
        security_events=[SecurityEventRead.model_validate(e) for e in events],
        login_attempts=[LoginAttemptRead.model_validate(a) for a in attempts],
    )

    result = await event_recorder.record_event(
        db,
        subject_id,
        SecurityEventType.DATA_EXPORT,
        DataExportMetadata(event_count=len(events), attempt_count=len(attempts)),
    )
    if not result.ok:
        logger.warning(f"Data export event not stored for {subject_id}: {result.error}")
    return export


@security_router.post("/delete-account", response_model=DataDeletionResponse)
async def delete_my_security_data(
    payload: DataDeletionRequest | None = None,
    user: dict = Depends(get_current_user),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_session),
):
    """
    GDPR right to be forgotten for the audit trail.

    Rows are kept for compliance but stripped of personal data. The
    DATA_DELETION event is critical, so it also raises an alert.
    """
    subject_id = str(user["id"])
    confirm_password = payload.confirm_password if payload else None

    if confirm_password:
        email = user.get("email")
        try:
            verified = (
                await identity_provider.sign_in(email, confirm_password) if email else None
            )
        except IdentityProviderError as e:
            logger.error(f"Password confirmation failed for {subject_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service unavailable",
            ) from e
        if verified is None or not verified.ok:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid password. Please confirm your password to delete your account.",
            )

    try:
        anonymized = await event_recorder.anonymize_subject_events(db, subject_id)
    except Exception as e:
        logger.error(f"Security data deletion failed for {subject_id}: {e}", exc_info=True)
        await attempt_ledger.safe_rollback(db)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An error occurred while processing your deletion request",
        ) from e

    result = await event_recorder.record_event(
        db,
        subject_id,
        SecurityEventType.DATA_DELETION,
        DataDeletionMetadata(reason="User requested", rows_affected=anonymized),
    )
    if not result.ok:
        logger.warning(f"Data deletion event not stored for {subject_id}: {result.error}")
    return DataDeletionResponse(success=True, anonymized_events=anonymized)
