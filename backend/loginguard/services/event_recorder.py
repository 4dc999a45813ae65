# backend/loginguard/services/event_recorder.py
"""
Security event recorder.

Provides:
- record_event(): append a SecurityEvent (best-effort, never raises)
- Critical-event classification and fire-and-forget alerting
- Metadata validation per event type, secret masking and size caps
- Subject queries and GDPR anonymization
"""

import asyncio
import json
import logging
import re
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loginguard.core.config import settings
from loginguard.core.request_context import get_request_context
from loginguard.db.models.security_event import SecurityEvent
from loginguard.schemas.security_event import (
    EventMetadata,
    SecurityEventType,
    metadata_model_for,
)
from loginguard.services.write_result import WriteResult

logger = logging.getLogger(__name__)

# Maximum size for serialized metadata (32KB)
MAX_METADATA_SIZE = 32 * 1024

QUERY_MAX_LIMIT = 100

CRITICAL_EVENTS = frozenset(
    {
        SecurityEventType.SUSPICIOUS_ACTIVITY,
        SecurityEventType.ACCOUNT_LOCKED,
        SecurityEventType.UNAUTHORIZED_ACCESS,
        SecurityEventType.DATA_DELETION,
    }
)

SENSITIVE_KEY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r".*password.*",
        r".*credential.*",
        r".*secret.*",
        r".*token.*",
        r".*api_key.*",
        r".*session.*",
    )
]


def is_critical(event_type: SecurityEventType) -> bool:
    """Critical events trigger an alert in addition to being stored."""
    return event_type in CRITICAL_EVENTS


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        redacted = {}
        for k, v in value.items():
            if any(p.match(str(k)) for p in SENSITIVE_KEY_PATTERNS):
                redacted[k] = "[REDACTED]"
            else:
                redacted[k] = _redact(v)
        return redacted
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def sanitize_metadata(
    event_type: SecurityEventType, metadata: BaseModel | dict[str, Any] | None
) -> dict[str, Any]:
    """
    Validate metadata against the event type's shape, mask secrets and cap size.

    Metadata that does not fit the known shape is kept through the generic
    fallback so the audit row is still written.
    """
    if metadata is None:
        raw: dict[str, Any] = {}
    elif isinstance(metadata, BaseModel):
        raw = metadata.model_dump(mode="json", exclude_none=True)
    else:
        raw = dict(metadata)

    model = metadata_model_for(event_type)
    try:
        validated: EventMetadata = model.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            f"Metadata for {event_type.value} does not match {model.__name__} "
            f"({e.error_count()} error(s)); storing as generic metadata."
        )
        validated = EventMetadata.model_validate(raw)

    sanitized = _redact(validated.model_dump(mode="json", exclude_none=True))

    serialized = json.dumps(sanitized, default=str)
    if len(serialized) > MAX_METADATA_SIZE:
        sanitized["_truncated"] = True
        while len(json.dumps(sanitized, default=str)) > MAX_METADATA_SIZE:
            candidates = [k for k in sanitized if k != "_truncated"]
            if not candidates:
                break
            largest_key = max(candidates, key=lambda k: len(str(sanitized[k])))
            del sanitized[largest_key]

    return sanitized


class SecurityAlerter:
    """
    Side channel for critical events.

    Always logs at CRITICAL; also POSTs to a webhook when one is configured.
    Alerts are dispatched as background tasks and never affect the caller.
    """

    def __init__(self, webhook_url: str | None = None, timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, payload: dict[str, Any]) -> asyncio.Task | None:
        try:
            task = asyncio.get_running_loop().create_task(self.send(payload))
        except RuntimeError:
            logger.error("No running event loop; security alert dropped.")
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def send(self, payload: dict[str, Any]) -> bool:
        logger.critical(f"SECURITY ALERT: {json.dumps(payload, default=str)}")
        if not self.webhook_url:
            return True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json={
                        "text": f"Security Alert: {payload.get('event_type')}",
                        "event": payload,
                    },
                )
            if response.status_code >= 400:
                logger.error(
                    f"Security alert webhook error: {response.status_code} - {response.text[:200]}"
                )
                return False
            return True
        except Exception as e:
            logger.error(f"Failed to deliver security alert: {e}")
            return False

    async def drain(self) -> None:
        """Wait for in-flight alerts (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


alerter = SecurityAlerter(webhook_url=settings.SECURITY_ALERT_WEBHOOK_URL)


async def record_event(
    db: AsyncSession,
    subject_id: str | None,
    event_type: SecurityEventType,
    metadata: BaseModel | dict[str, Any] | None = None,
    origin_ip: str | None = None,
    user_agent: str | None = None,
    occurred_at: datetime | None = None,
) -> WriteResult:
    """
    Append a security event and commit it.

    origin_ip / user_agent default to the current request context.
    Storage failures are logged and returned as a failed WriteResult.
    """
    ctx = get_request_context()
    if origin_ip is None and ctx:
        origin_ip = ctx.ip_address
    if user_agent is None and ctx:
        user_agent = ctx.user_agent

    try:
        event = SecurityEvent(
            subject_id=str(subject_id) if subject_id else None,
            event_type=event_type.value,
            event_metadata=sanitize_metadata(event_type, metadata),
            origin_ip=origin_ip,
            user_agent=user_agent[:512] if user_agent else None,
            occurred_at=occurred_at or datetime.now(UTC),
        )
        db.add(event)
        await db.commit()
    except Exception as e:
        logger.error(f"Failed to record security event {event_type.value}: {e}")
        try:
            await db.rollback()
        except Exception as rollback_error:
            logger.warning(f"Rollback after event failure also failed: {rollback_error}")
        return WriteResult.failure(e)

    logger.info(f"[SECURITY] {event_type.value} subject={event.subject_id} ip={origin_ip}")

    if is_critical(event_type):
        alerter.dispatch(
            {
                "event_id": str(event.id),
                "event_type": event_type.value,
                "subject_id": event.subject_id,
                "origin_ip": origin_ip,
                "metadata": event.event_metadata,
                "request_id": ctx.request_id if ctx else None,
                "timestamp": event.occurred_at.isoformat(),
            }
        )

    return WriteResult.success(event)


async def query_events(
    db: AsyncSession,
    subject_id: str,
    limit: int = 50,
    event_type: SecurityEventType | None = None,
) -> list[SecurityEvent]:
    """A subject's own events, newest first."""
    limit = max(1, min(limit, QUERY_MAX_LIMIT))
    stmt = select(SecurityEvent).where(SecurityEvent.subject_id == str(subject_id))
    if event_type is not None:
        stmt = stmt.where(SecurityEvent.event_type == event_type.value)
    stmt = stmt.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def anonymize_subject_events(db: AsyncSession, subject_id: str) -> int:
    """
    GDPR: keep a subject's audit rows but strip personal data from them.

    Marks metadata as anonymized, drops any email it carries and clears the user agent.
    """
    result = await db.execute(
        select(SecurityEvent).where(SecurityEvent.subject_id == str(subject_id))
    )
    events = list(result.scalars().all())
    for event in events:
        metadata = dict(event.event_metadata or {})
        metadata.pop("email", None)
        metadata["anonymized"] = True
        event.event_metadata = metadata
        event.user_agent = None
    await db.commit()
    logger.info(f"Anonymized {len(events)} security event(s) for subject {subject_id}")
    return len(events)
