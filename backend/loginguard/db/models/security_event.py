"""
Security event model: append-only audit trail for security-relevant occurrences.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from loginguard.db.base_class import Base


class SecurityEvent(Base):
    """
    Immutable audit row for logins, lockouts, MFA changes, data export/deletion,
    unauthorized access and rate-limit trips.

    subject_id is NULL for pre-authentication events (the identity was never
    verified). There is no foreign key to login_attempts; the two trails are
    queried independently.
    """

    __tablename__ = "security_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    subject_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # "metadata" is reserved on declarative classes, so the attribute is renamed
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    origin_ip: Mapped[str | None] = mapped_column(String(45), nullable=True, index=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )

    __table_args__ = (
        Index("ix_security_events_subject_occurred", "subject_id", "occurred_at"),
        Index("ix_security_events_type_occurred", "event_type", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<SecurityEvent({self.id}, {self.event_type}, subject={self.subject_id})>"
