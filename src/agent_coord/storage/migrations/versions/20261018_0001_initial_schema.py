"""Initial coordinator schema: tasks, messages, agents, history, config and read views."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

_V_ACTIVE_TASKS = """
CREATE VIEW IF NOT EXISTS v_active_tasks AS
SELECT
    t.task_id,
    t.assigned_to,
    t.status,
    t.priority,
    t.task_type,
    t.payload_json,
    t.created_at,
    t.started_at,
    julianday('now') - julianday(t.created_at) AS age_days,
    a.agent_id,
    a.status AS agent_status
FROM tasks t
LEFT JOIN agents a ON t.assigned_to = a.agent_id
WHERE t.status IN ('pending', 'in_progress')
ORDER BY t.priority DESC, t.created_at ASC, t.task_id ASC
"""

_V_AGENT_HEALTH = """
CREATE VIEW IF NOT EXISTS v_agent_health AS
SELECT
    agent_id,
    agent_type,
    status,
    current_task_id,
    total_tasks_completed,
    total_tasks_failed,
    (julianday('now') - julianday(last_heartbeat)) * 86400.0 AS seconds_since_heartbeat,
    last_heartbeat
FROM agents
"""

_V_UNREAD_MESSAGES = """
CREATE VIEW IF NOT EXISTS v_unread_messages AS
SELECT
    id,
    from_agent,
    to_agent,
    topic,
    payload_json,
    created_at
FROM messages
WHERE consumed = 0
ORDER BY created_at ASC, id ASC
"""


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("requested_agent", sa.String(), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'complete', 'failed')",
            name="ck_tasks_status",
        ),
        sa.CheckConstraint("retries <= max_retries", name="ck_tasks_retries"),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_tasks_task_type", "tasks", ["task_type"], unique=False)
    op.create_index(
        "idx_tasks_status_priority",
        "tasks",
        ["status", "priority", "created_at"],
        unique=False,
    )
    op.create_index("idx_tasks_assigned", "tasks", ["assigned_to", "status"], unique=False)

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("from_agent", sa.String(), nullable=False),
        sa.Column("to_agent", sa.String(), nullable=True),
        sa.Column("topic", sa.String(), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "idx_messages_to_consumed",
        "messages",
        ["to_agent", "consumed", "created_at"],
        unique=False,
    )
    op.create_index("idx_messages_topic", "messages", ["topic", "consumed"], unique=False)

    op.create_table(
        "agents",
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("agent_type", sa.String(), nullable=False, server_default="general"),
        sa.Column("capabilities_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="idle"),
        sa.Column("current_task_id", sa.String(), nullable=True),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "total_tasks_completed",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("total_tasks_failed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('idle', 'busy', 'offline')",
            name="ck_agents_status",
        ),
        sa.PrimaryKeyConstraint("agent_id"),
    )
    op.create_index("ix_agents_agent_type", "agents", ["agent_type"], unique=False)
    op.create_index("ix_agents_status", "agents", ["status"], unique=False)

    op.create_table(
        "task_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_history_task_id", "task_history", ["task_id"], unique=False)
    op.create_index("ix_task_history_agent_id", "task_history", ["agent_id"], unique=False)
    op.create_index("ix_task_history_action", "task_history", ["action"], unique=False)
    op.create_index(
        "idx_task_history_task_time",
        "task_history",
        ["task_id", "timestamp"],
        unique=False,
    )

    op.create_table(
        "config",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.execute(sa.text(_V_ACTIVE_TASKS))
    op.execute(sa.text(_V_AGENT_HEALTH))
    op.execute(sa.text(_V_UNREAD_MESSAGES))


def downgrade() -> None:
    op.execute(sa.text("DROP VIEW IF EXISTS v_unread_messages"))
    op.execute(sa.text("DROP VIEW IF EXISTS v_agent_health"))
    op.execute(sa.text("DROP VIEW IF EXISTS v_active_tasks"))
    op.drop_table("config")
    op.drop_index("idx_task_history_task_time", table_name="task_history")
    op.drop_index("ix_task_history_action", table_name="task_history")
    op.drop_index("ix_task_history_agent_id", table_name="task_history")
    op.drop_index("ix_task_history_task_id", table_name="task_history")
    op.drop_table("task_history")
    op.drop_index("ix_agents_status", table_name="agents")
    op.drop_index("ix_agents_agent_type", table_name="agents")
    op.drop_table("agents")
    op.drop_index("idx_messages_topic", table_name="messages")
    op.drop_index("idx_messages_to_consumed", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_tasks_assigned", table_name="tasks")
    op.drop_index("idx_tasks_status_priority", table_name="tasks")
    op.drop_index("ix_tasks_task_type", table_name="tasks")
    op.drop_table("tasks")
