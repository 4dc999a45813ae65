# backend/loginguard/services/lockout_policy.py
"""
Account lockout decision for brute force protection.

An (identity, ip) pair is locked while at least MAX_FAILURES failed attempts
exist in the trailing WINDOW. The window is anchored to the time of the check,
so a lock expires as old failures age out; denied requests do not extend it.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession

from loginguard.core.config import settings
from loginguard.services import attempt_ledger

logger = logging.getLogger(__name__)

MAX_FAILURES = settings.LOGIN_MAX_ATTEMPTS
WINDOW = timedelta(minutes=settings.LOGIN_ATTEMPT_WINDOW_MINUTES)


class LockoutDecision(NamedTuple):
    """Result of a lockout check (derived, never persisted)."""

    locked: bool
    message: str | None = None
    remaining_attempts: int | None = None
    failures: int = 0


def decide(failures: int, max_failures: int = MAX_FAILURES) -> LockoutDecision:
    """Pure decision over a failure count."""
    if failures >= max_failures:
        return LockoutDecision(locked=True, message=settings.LOCKOUT_MESSAGE, failures=failures)
    return LockoutDecision(
        locked=False,
        remaining_attempts=max(0, max_failures - failures),
        failures=failures,
    )


async def evaluate(
    db: AsyncSession,
    identity: str,
    origin_ip: str,
    now: datetime | None = None,
) -> LockoutDecision:
    """
    Decide whether the pair may attempt a login right now.

    Idempotent: two calls with no attempt recorded in between return the same decision.
    """
    now = now or datetime.now(UTC)
    failures = await attempt_ledger.count_failures(
        db, identity, origin_ip, window_start=now - WINDOW, now=now
    )
    decision = decide(failures)
    if decision.locked:
        logger.info(f"Lockout active for {identity} from {origin_ip} ({failures} failures)")
    return decision
