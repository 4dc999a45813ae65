# backend/loginguard/tasks/maintenance.py
"""
Maintenance tasks for the attempt ledger.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from loginguard.core.config import settings
from loginguard.db import session as db_session
from loginguard.services import attempt_ledger
from loginguard.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="loginguard.tasks.maintenance.purge_expired_login_attempts")
def purge_expired_login_attempts_task():
    """Periodic retention purge. Sync Celery entry point for the async logic."""
    return asyncio.run(_purge_in_fresh_loop())


async def _purge_in_fresh_loop() -> int:
    try:
        return await purge_expired_login_attempts()
    finally:
        # Pooled connections belong to this loop; the next asyncio.run gets a new one.
        if db_session.worker_async_engine is not None:
            await db_session.worker_async_engine.dispose()


async def purge_expired_login_attempts(retention_days: int | None = None) -> int:
    """
    Delete login attempts older than the retention period.

    Security events are not touched here; they are kept for audit.
    """
    retention_days = retention_days or settings.LOGIN_ATTEMPT_RETENTION_DAYS
    cutoff = datetime.now(UTC) - timedelta(days=retention_days)
    logger.info(f"Maintenance: Purging login attempts older than {retention_days} days.")

    db_session.initialize_worker_db_resources()
    if db_session.WorkerSessionLocal is None:
        raise RuntimeError("WorkerSessionLocal not initialized")

    async with db_session.WorkerSessionLocal() as db:
        try:
            deleted = await attempt_ledger.purge_attempts_before(db, cutoff)
        except Exception as e:
            logger.error(f"Login attempt purge failed: {e}", exc_info=True)
            await db.rollback()
            raise

    return deleted
