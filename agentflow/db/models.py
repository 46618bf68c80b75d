from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

metadata = MetaData()

tasks = Table(
    "tasks",
    metadata,
    Column("id", String(length=64), primary_key=True),
    Column("description", Text(), nullable=False),
    Column("status", String(length=16), nullable=False, server_default="pending"),
    Column("result", JSONB(astext_type=Text()), nullable=True),
    Column("error", Text(), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("completed_at", DateTime(timezone=True), nullable=True),
)
Index("ix_tasks_status", tasks.c.status)

execution_steps = Table(
    "execution_steps",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True),
    Column("task_id", String(length=64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    Column("step_number", Integer(), nullable=False),
    Column("tool_name", String(length=128), nullable=False),
    Column("tool_input", JSONB(astext_type=Text()), nullable=False),
    Column("tool_output", JSONB(astext_type=Text()), nullable=True),
    Column("status", String(length=16), nullable=False, server_default="executing"),
    Column("error", Text(), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("task_id", "step_number", name="uq_execution_steps_task_step"),
)
Index("ix_execution_steps_task_id", execution_steps.c.task_id)

scraped_data = Table(
    "scraped_data",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True),
    Column("task_id", String(length=64), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    Column("url", Text(), nullable=True),
    Column("data", JSONB(astext_type=Text()), nullable=True),
    Column("metadata", JSONB(astext_type=Text()), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
Index("ix_scraped_data_task_id", scraped_data.c.task_id)
