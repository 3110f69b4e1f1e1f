"""SQLModel ORM tables for coordinator storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_status_priority", "status", "priority", "created_at"),
        Index("idx_tasks_assigned", "assigned_to", "status"),
    )

    task_id: str = Field(primary_key=True)
    task_type: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(default="pending")
    priority: int = Field(default=5)
    assigned_to: str | None = None
    requested_agent: str | None = None
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    retries: int = Field(default=0)
    max_retries: int = Field(default=3)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class Message(SQLModel, table=True):
    __tablename__ = "messages"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_messages_to_consumed", "to_agent", "consumed", "created_at"),
        Index("idx_messages_topic", "topic", "consumed"),
    )

    id: int | None = Field(default=None, primary_key=True)
    from_agent: str
    to_agent: str | None = None
    topic: str | None = None
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    consumed: bool = Field(default=False)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Agent(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    agent_id: str = Field(primary_key=True)
    agent_type: str = Field(default="general", index=True)
    capabilities_json: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(default="idle", index=True)
    current_task_id: str | None = None
    last_heartbeat: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    total_tasks_completed: int = Field(default=0)
    total_tasks_failed: int = Field(default=0)
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))


class TaskHistory(SQLModel, table=True):
    __tablename__ = "task_history"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_history_task_time", "task_id", "timestamp"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(index=True)
    agent_id: str = Field(index=True)
    action: str = Field(index=True)
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    details_json: str | None = Field(default=None, sa_column=Column(Text))


class ConfigEntry(SQLModel, table=True):
    __tablename__ = "config"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
