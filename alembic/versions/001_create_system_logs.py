"""Create the system_logs table.

Revision ID: 001
Revises:
Create Date: 2025-07-12

This migration creates:
1. system_logs, the sink for slow query records and load test writes
2. Indexes for level/time and component/time lookups
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create system_logs."""
    op.create_table(
        "system_logs",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column(
            "level",
            sa.String(10),
            nullable=False,
            comment="DEBUG, INFO, WARNING, ERROR or CRITICAL",
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "component",
            sa.String(100),
            nullable=False,
            comment="Emitting component, e.g. SlowQueryMonitor or load-test",
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "level IN ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')",
            name="ck_system_logs_level",
        ),
    )

    op.create_index(
        "ix_system_logs_level_created_at", "system_logs", ["level", "created_at"]
    )
    op.create_index(
        "ix_system_logs_component_created_at",
        "system_logs",
        ["component", "created_at"],
    )


def downgrade() -> None:
    """Drop system_logs."""
    op.drop_index("ix_system_logs_component_created_at", table_name="system_logs")
    op.drop_index("ix_system_logs_level_created_at", table_name="system_logs")
    op.drop_table("system_logs")
