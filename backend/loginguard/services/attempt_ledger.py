# backend/loginguard/services/attempt_ledger.py
"""
Append-only ledger of authentication attempts.

Writes are best-effort: a storage failure is logged and reported through a
WriteResult, never raised, so that login availability does not depend on
the ledger. Reads raise normally; the caller decides how to degrade.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loginguard.db.models.login_attempt import LoginAttempt
from loginguard.services.write_result import WriteResult

logger = logging.getLogger(__name__)

USER_AGENT_MAX_LENGTH = 512
HISTORY_MAX_LIMIT = 100


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


async def record_attempt(
    db: AsyncSession,
    identity: str,
    origin_ip: str,
    user_agent: str | None,
    succeeded: bool,
    attempted_at: datetime | None = None,
) -> WriteResult:
    """
    Append one attempt row and commit it.

    The row is committed before returning so a following count_failures()
    in the same request sees it.
    """
    attempt = LoginAttempt(
        identity=normalize_identity(identity),
        origin_ip=origin_ip,
        user_agent=user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
        succeeded=succeeded,
        attempted_at=attempted_at or datetime.now(UTC),
    )
    try:
        db.add(attempt)
        await db.commit()
    except Exception as e:
        logger.error(f"Failed to record login attempt for {attempt.identity}: {e}")
        await safe_rollback(db)
        return WriteResult.failure(e)
    return WriteResult.success(attempt)


async def count_failures(
    db: AsyncSession,
    identity: str,
    origin_ip: str,
    window_start: datetime,
    now: datetime | None = None,
) -> int:
    """Count failed attempts for the pair within [window_start, now]."""
    now = now or datetime.now(UTC)
    stmt = select(func.count(LoginAttempt.id)).where(
        LoginAttempt.identity == normalize_identity(identity),
        LoginAttempt.origin_ip == origin_ip,
        LoginAttempt.succeeded.is_(False),
        LoginAttempt.attempted_at >= window_start,
        LoginAttempt.attempted_at <= now,
    )
    result = await db.execute(stmt)
    return int(result.scalar() or 0)


async def clear_failures(db: AsyncSession, identity: str, origin_ip: str) -> WriteResult:
    """Delete failed rows for the pair (failure-count reset after a success)."""
    identity = normalize_identity(identity)
    stmt = delete(LoginAttempt).where(
        LoginAttempt.identity == identity,
        LoginAttempt.origin_ip == origin_ip,
        LoginAttempt.succeeded.is_(False),
    )
    try:
        result = await db.execute(stmt)
        await db.commit()
    except Exception as e:
        logger.error(f"Failed to clear login attempts for {identity}: {e}")
        await safe_rollback(db)
        return WriteResult.failure(e)
    return WriteResult.success(int(getattr(result, "rowcount", 0) or 0))


async def get_history(db: AsyncSession, identity: str, limit: int = 10) -> list[LoginAttempt]:
    """Most recent attempts for an identity, newest first."""
    limit = max(1, min(limit, HISTORY_MAX_LIMIT))
    stmt = (
        select(LoginAttempt)
        .where(LoginAttempt.identity == normalize_identity(identity))
        .order_by(LoginAttempt.attempted_at.desc(), LoginAttempt.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def failed_identities_from_ip(
    db: AsyncSession, origin_ip: str, since: datetime, now: datetime | None = None
) -> set[str]:
    """Distinct identities with failed attempts from one IP since a point in time."""
    now = now or datetime.now(UTC)
    stmt = (
        select(LoginAttempt.identity)
        .where(
            LoginAttempt.origin_ip == origin_ip,
            LoginAttempt.succeeded.is_(False),
            LoginAttempt.attempted_at >= since,
            LoginAttempt.attempted_at <= now,
        )
        .distinct()
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def purge_attempts_before(db: AsyncSession, cutoff: datetime) -> int:
    """Retention purge: delete every attempt older than cutoff."""
    result = await db.execute(delete(LoginAttempt).where(LoginAttempt.attempted_at < cutoff))
    await db.commit()
    deleted = int(getattr(result, "rowcount", 0) or 0)
    logger.info(f"Retention purge removed {deleted} login attempt(s) older than {cutoff}")
    return deleted


async def safe_rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except Exception as e:
        logger.warning(f"Rollback after ledger failure also failed: {e}")
