# backend/loginguard/db/models/login_attempt.py
"""
Model for the login-attempt ledger.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from loginguard.db.base_class import Base


class LoginAttempt(Base):
    """
    One row per authentication attempt, successful or not.

    Rows are append-only. They are removed only when failures for an
    (identity, ip) pair are cleared after a successful login, or by the
    retention purge. Used for:
    - Windowed failure counting (account lockout)
    - Brute force detection by IP fan-out
    - Login history / forensics
    """

    __tablename__ = "login_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Claimed account identifier (normalized email), not verified to exist
    identity: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Source IP address as seen by the outermost trusted layer
    origin_ip: Mapped[str] = mapped_column(String(45), nullable=False, index=True)

    # Untrusted, forensic display only
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )

    # The lockout count is a single range scan over this index
    __table_args__ = (
        Index(
            "ix_login_attempts_identity_ip_attempted",
            "identity",
            "origin_ip",
            "succeeded",
            "attempted_at",
        ),
        Index("ix_login_attempts_ip_attempted", "origin_ip", "attempted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LoginAttempt(identity={self.identity}, ip={self.origin_ip}, "
            f"succeeded={self.succeeded})>"
        )
