"""Embedding queue schema.

Creates the task queue (embedding_tasks), the single-row worker status
table, the audit log, performance metrics, and the articles and
chunk_embeddings tables read and written by the worker. Enables the
pgvector extension for chunk vectors.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "taskoperation": ("create", "update", "delete"),
    "taskpriority": ("high", "normal", "low"),
    "taskstatus": ("pending", "processing", "completed", "failed"),
    "loglevel": ("debug", "info", "warn", "error"),
    "logcategory": (
        "task_lifecycle",
        "worker_status",
        "queue_operations",
        "performance",
        "error_handling",
        "bulk_operations",
    ),
    "metrictype": (
        "task_processing_time",
        "queue_throughput",
        "worker_utilization",
        "error_rate",
        "queue_depth",
        "embedding_generation_time",
        "database_query_time",
        "bulk_operation_time",
    ),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(op.get_bind(), checkfirst=True)

    # Task queue
    op.create_table(
        "embedding_tasks",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("article_id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("operation", _enum("taskoperation"), nullable=False),
        sa.Column("priority", _enum("taskpriority"), nullable=False, server_default="normal"),
        sa.Column("status", _enum("taskstatus"), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "scheduled_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
    )
    op.create_index(
        "ix_embedding_tasks_claim",
        "embedding_tasks",
        ["status", "priority", "scheduled_at"],
    )
    op.create_index("ix_embedding_tasks_article_id", "embedding_tasks", ["article_id"])
    op.create_index("ix_embedding_tasks_created_at", "embedding_tasks", ["created_at"])
    # Bulk operation lookups go through metadata->>'operation_id'
    op.execute(
        "CREATE INDEX ix_embedding_tasks_operation_id "
        "ON embedding_tasks ((metadata->>'operation_id'))"
    )

    # Worker status, constrained to one row
    op.create_table(
        "embedding_worker_status",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("is_running", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tasks_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tasks_succeeded", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tasks_failed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("id = 1", name="ck_embedding_worker_status_single_row"),
    )

    # Audit log
    op.create_table(
        "embedding_audit_logs",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("level", _enum("loglevel"), nullable=False),
        sa.Column("category", _enum("logcategory"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("task_id", sa.Text(), nullable=True),
        sa.Column("article_id", sa.Integer(), nullable=True),
        sa.Column("operation_id", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("stack_trace", sa.Text(), nullable=True),
    )
    op.create_index("ix_embedding_audit_logs_timestamp", "embedding_audit_logs", ["timestamp"])
    op.create_index(
        "ix_embedding_audit_logs_category_level",
        "embedding_audit_logs",
        ["category", "level"],
    )
    op.create_index("ix_embedding_audit_logs_task_id", "embedding_audit_logs", ["task_id"])
    op.create_index(
        "ix_embedding_audit_logs_operation_id", "embedding_audit_logs", ["operation_id"]
    )

    # Performance metrics
    op.create_table(
        "performance_metrics",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("metric_type", _enum("metrictype"), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("unit", sa.Text(), nullable=False),
        sa.Column("task_id", sa.Text(), nullable=True),
        sa.Column("article_id", sa.Integer(), nullable=True),
        sa.Column("operation_id", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
    )
    op.create_index(
        "ix_performance_metrics_type_timestamp",
        "performance_metrics",
        ["metric_type", "timestamp"],
    )
    op.create_index("ix_performance_metrics_task_id", "performance_metrics", ["task_id"])
    op.create_index(
        "ix_performance_metrics_operation_id", "performance_metrics", ["operation_id"]
    )

    # Articles (owned by the notes application when it shares the database)
    op.create_table(
        "articles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # Chunk vectors
    op.create_table(
        "chunk_embeddings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("article_id", sa.Integer(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("heading_path", JSONB, nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "article_id", "chunk_index", name="uq_chunk_embeddings_article_chunk"
        ),
    )
    # Add pgvector column via raw SQL (vector type not natively supported by sa.Column)
    op.execute("ALTER TABLE chunk_embeddings ADD COLUMN embedding vector(768) NOT NULL")
    op.create_index("ix_chunk_embeddings_article_id", "chunk_embeddings", ["article_id"])
    op.execute(
        "CREATE INDEX ix_chunk_embeddings_embedding_hnsw ON chunk_embeddings "
        "USING hnsw (embedding vector_cosine_ops)"
    )


def downgrade() -> None:
    op.drop_table("chunk_embeddings")
    op.drop_table("articles")
    op.drop_table("performance_metrics")
    op.drop_table("embedding_audit_logs")
    op.drop_table("embedding_worker_status")
    op.drop_table("embedding_tasks")

    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)

    op.execute("DROP EXTENSION IF EXISTS vector")
