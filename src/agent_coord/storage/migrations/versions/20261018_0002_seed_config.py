"""Seed default system configuration rows."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None

DEFAULT_CONFIG = (
    ("system_version", "1.0.0"),
    ("max_task_retries", "3"),
    ("agent_heartbeat_timeout_seconds", "30"),
    ("task_cleanup_days", "7"),
)


def upgrade() -> None:
    for key, value in DEFAULT_CONFIG:
        op.execute(
            sa.text(
                "INSERT OR IGNORE INTO config (key, value, updated_at) "
                "VALUES (:key, :value, CURRENT_TIMESTAMP)",
            ).bindparams(key=key, value=value),
        )


def downgrade() -> None:
    for key, _ in DEFAULT_CONFIG:
        op.execute(sa.text("DELETE FROM config WHERE key = :key").bindparams(key=key))
