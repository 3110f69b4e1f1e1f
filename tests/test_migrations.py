from pathlib import Path

import allure
from sqlalchemy import text

from agent_coord.coordinator.store import CoordinatorStore

pytestmark = [
    allure.epic("Coordination Core"),
    allure.feature("Persistence"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = CoordinatorStore(tmp_path / "migrations.db")
    store.init_schema()

    with store.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        objects = connection.execute(
            text(
                """
                SELECT type, name
                FROM sqlite_master
                WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
                ORDER BY type, name
                """,
            ),
        ).all()
        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()

    assert version == "20261018_0002"
    assert [(row[0], row[1]) for row in objects] == [
        ("table", "agents"),
        ("table", "alembic_version"),
        ("table", "config"),
        ("table", "messages"),
        ("table", "task_history"),
        ("table", "tasks"),
        ("view", "v_active_tasks"),
        ("view", "v_agent_health"),
        ("view", "v_unread_messages"),
    ]
    assert str(journal_mode).lower() == "wal"
    store.close()


def test_schema_seeds_default_config_and_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "seed.db"
    store = CoordinatorStore(db_path)
    store.init_schema()
    store.set_config(key="max_task_retries", value="6")
    store.init_schema()

    assert store.list_config() == {
        "agent_heartbeat_timeout_seconds": "30",
        "max_task_retries": "6",
        "system_version": "1.0.0",
        "task_cleanup_days": "7",
    }
    store.close()
