# backend/loginguard/services/suspicious_activity.py
"""
Advisory suspicious-activity heuristics over the event and attempt stores.

Nothing here denies access. Each rule is independently evaluable and returns
a reason string when it fires, or None.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loginguard.core.config import settings
from loginguard.db.models.security_event import SecurityEvent
from loginguard.schemas.security_event import SecurityEventType
from loginguard.services import attempt_ledger

logger = logging.getLogger(__name__)

REASON_FAILED_LOGINS = "Multiple failed login attempts"
REASON_MULTIPLE_IPS = "Multiple IP addresses in short time"
REASON_IP_FANOUT = "Failed logins against many accounts from one IP address"
REASON_NEW_IP = "Login from new IP address"


class SuspicionResult(NamedTuple):
    suspicious: bool
    reasons: list[str]


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


async def check_failed_logins(
    db: AsyncSession, subject_id: str, now: datetime | None = None
) -> str | None:
    """Rule A: many LOGIN_FAILURE events for the subject in a short window."""
    now = _now(now)
    since = now - timedelta(minutes=settings.SUSPICIOUS_FAILURE_WINDOW_MINUTES)
    result = await db.execute(
        select(func.count(SecurityEvent.id)).where(
            SecurityEvent.subject_id == str(subject_id),
            SecurityEvent.event_type == SecurityEventType.LOGIN_FAILURE.value,
            SecurityEvent.occurred_at >= since,
            SecurityEvent.occurred_at <= now,
        )
    )
    failures = int(result.scalar() or 0)
    if failures >= settings.SUSPICIOUS_FAILURE_THRESHOLD:
        return REASON_FAILED_LOGINS
    return None


async def check_multiple_ips(
    db: AsyncSession,
    subject_id: str,
    now: datetime | None = None,
    extra_ip: str | None = None,
) -> str | None:
    """
    Rule B: the subject's events span too many distinct origin IPs.

    extra_ip lets a caller include the IP of an event not stored yet.
    """
    now = _now(now)
    since = now - timedelta(minutes=settings.SUSPICIOUS_FANOUT_WINDOW_MINUTES)
    result = await db.execute(
        select(SecurityEvent.origin_ip)
        .where(
            SecurityEvent.subject_id == str(subject_id),
            SecurityEvent.origin_ip.is_not(None),
            SecurityEvent.occurred_at >= since,
            SecurityEvent.occurred_at <= now,
        )
        .distinct()
    )
    ips = set(result.scalars().all())
    if extra_ip:
        ips.add(extra_ip)
    if len(ips) > settings.SUSPICIOUS_MAX_DISTINCT_IPS:
        return REASON_MULTIPLE_IPS
    return None


async def check_ip_fanout(
    db: AsyncSession, origin_ip: str, now: datetime | None = None
) -> str | None:
    """Rule C: one IP fails against many distinct identities (credential stuffing)."""
    now = _now(now)
    since = now - timedelta(minutes=settings.SUSPICIOUS_FANOUT_WINDOW_MINUTES)
    identities = await attempt_ledger.failed_identities_from_ip(db, origin_ip, since, now=now)
    if len(identities) > settings.SUSPICIOUS_MAX_DISTINCT_IDENTITIES:
        logger.warning(f"IP {origin_ip} failed logins against {len(identities)} identities")
        return REASON_IP_FANOUT
    return None


async def check_new_ip(
    db: AsyncSession, subject_id: str, origin_ip: str, now: datetime | None = None
) -> str | None:
    """
    Rule D: successful login from an IP not seen among the subject's recent logins.

    A subject with no recent successful logins has no baseline and is not flagged.
    """
    now = _now(now)
    since = now - timedelta(days=settings.KNOWN_IP_LOOKBACK_DAYS)
    result = await db.execute(
        select(SecurityEvent.origin_ip)
        .where(
            SecurityEvent.subject_id == str(subject_id),
            SecurityEvent.event_type == SecurityEventType.LOGIN_SUCCESS.value,
            SecurityEvent.occurred_at >= since,
            SecurityEvent.occurred_at <= now,
        )
        .order_by(SecurityEvent.occurred_at.desc())
        .limit(settings.KNOWN_IP_SAMPLE_SIZE)
    )
    known_ips = list(result.scalars().all())
    if known_ips and origin_ip not in known_ips:
        return REASON_NEW_IP
    return None


async def detect_suspicious_activity(
    db: AsyncSession, subject_id: str, now: datetime | None = None
) -> SuspicionResult:
    """Subject-level check: Rule A, then Rule B. Reports the first rule that fires."""
    for rule in (check_failed_logins, check_multiple_ips):
        reason = await rule(db, subject_id, now=now)
        if reason:
            return SuspicionResult(True, [reason])
    return SuspicionResult(False, [])


async def assess_login(
    db: AsyncSession,
    subject_id: str,
    origin_ip: str,
    now: datetime | None = None,
) -> SuspicionResult:
    """
    Run before the LOGIN_SUCCESS event for this login is stored.

    Combines Rules A, B, C and D; all firing reasons are reported.
    """
    reasons = []
    for reason in (
        await check_failed_logins(db, subject_id, now=now),
        await check_new_ip(db, subject_id, origin_ip, now=now),
        await check_multiple_ips(db, subject_id, now=now, extra_ip=origin_ip),
        await check_ip_fanout(db, origin_ip, now=now),
    ):
        if reason:
            reasons.append(reason)
    return SuspicionResult(bool(reasons), reasons)
