"""Create login_attempts and security_events tables

Revision ID: a7c3e91f0b2d
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a7c3e91f0b2d"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "login_attempts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("identity", sa.String(length=255), nullable=False),
        sa.Column("origin_ip", sa.String(length=45), nullable=False),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("succeeded", sa.Boolean(), nullable=False),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_login_attempts")),
    )
    op.create_index(op.f("ix_login_attempts_identity"), "login_attempts", ["identity"])
    op.create_index(op.f("ix_login_attempts_origin_ip"), "login_attempts", ["origin_ip"])
    op.create_index(op.f("ix_login_attempts_attempted_at"), "login_attempts", ["attempted_at"])
    op.create_index(
        "ix_login_attempts_identity_ip_attempted",
        "login_attempts",
        ["identity", "origin_ip", "succeeded", "attempted_at"],
    )
    op.create_index(
        "ix_login_attempts_ip_attempted", "login_attempts", ["origin_ip", "attempted_at"]
    )

    op.create_table(
        "security_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=True),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column(
            "metadata",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("origin_ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_security_events")),
    )
    op.create_index(op.f("ix_security_events_subject_id"), "security_events", ["subject_id"])
    op.create_index(op.f("ix_security_events_event_type"), "security_events", ["event_type"])
    op.create_index(op.f("ix_security_events_origin_ip"), "security_events", ["origin_ip"])
    op.create_index(op.f("ix_security_events_occurred_at"), "security_events", ["occurred_at"])
    op.create_index(
        "ix_security_events_subject_occurred", "security_events", ["subject_id", "occurred_at"]
    )
    op.create_index(
        "ix_security_events_type_occurred", "security_events", ["event_type", "occurred_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("security_events")
    op.drop_table("login_attempts")
