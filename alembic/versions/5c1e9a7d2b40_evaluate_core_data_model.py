"""evaluate_core_data_model

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

revision: str = "5c1e9a7d2b40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "user_attempts",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'in_progress'")),
        sa.Column("total_questions", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("questions_answered", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("correct_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pause_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('in_progress','completed','abandoned')",
            name="ck_user_attempts_status",
        ),
        sa.CheckConstraint(
            "questions_answered >= 0 AND questions_answered <= total_questions",
            name="ck_user_attempts_answered_range",
        ),
        sa.CheckConstraint("correct_count >= 0", name="ck_user_attempts_correct_non_negative"),
    )
    op.create_index("idx_user_attempts_user_status", "user_attempts", ["user_id", "status"])
    op.create_index("idx_user_attempts_user_completed", "user_attempts", ["user_id", "completed_at"])

    op.create_table(
        "mcq_items",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("topic", sa.String(128), nullable=False),
        sa.Column("subtopic", sa.String(128), nullable=True),
        sa.Column("version", sa.String(32), nullable=True),
        sa.Column("difficulty", sa.String(8), nullable=False),
        sa.Column("bloom_level", sa.String(16), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("options", postgresql.JSONB(), nullable=False),
        sa.Column("correct_index", sa.SmallInteger(), nullable=False),
        sa.Column("code", sa.Text(), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("citations", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("content_key", sa.String(64), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("difficulty IN ('Easy','Medium','Hard')", name="ck_mcq_items_difficulty"),
        sa.CheckConstraint(
            "bloom_level IN ('Remember','Understand','Apply','Analyze','Evaluate','Create')",
            name="ck_mcq_items_bloom_level",
        ),
        sa.CheckConstraint(
            "correct_index >= 0 AND correct_index <= 3",
            name="ck_mcq_items_correct_index_range",
        ),
        sa.CheckConstraint("jsonb_array_length(options) <= 4", name="ck_mcq_items_options_max_four"),
    )
    op.create_index("uq_mcq_items_content_key", "mcq_items", ["content_key"], unique=True)
    op.create_index("idx_mcq_items_selection", "mcq_items", ["difficulty", "topic", "bloom_level"])
    op.create_index("idx_mcq_items_topic_subtopic", "mcq_items", ["topic", "subtopic"])
    op.execute(
        "CREATE INDEX idx_mcq_items_embedding_hnsw ON mcq_items "
        "USING hnsw (embedding vector_cosine_ops)"
    )

    op.create_table(
        "attempt_questions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("attempt_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("question_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("question_order", sa.Integer(), nullable=False),
        sa.Column("user_answer_index", sa.SmallInteger(), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("question_order >= 1", name="ck_attempt_questions_order_positive"),
        sa.CheckConstraint(
            "user_answer_index IS NULL OR (user_answer_index >= 0 AND user_answer_index <= 3)",
            name="ck_attempt_questions_answer_range",
        ),
        sa.ForeignKeyConstraint(["attempt_id"], ["user_attempts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["question_id"], ["mcq_items.id"]),
        sa.UniqueConstraint("attempt_id", "question_order", name="uq_attempt_questions_attempt_order"),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_attempt_questions_attempt_question"),
    )
    op.create_index("idx_attempt_questions_question", "attempt_questions", ["question_id"])

    op.create_table(
        "document_chunks",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("topic", sa.String(128), nullable=True),
        sa.Column("subtopic", sa.String(128), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("bucket", sa.String(32), nullable=True),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_document_chunks_user_topic", "document_chunks", ["user_id", "topic"])
    op.execute(
        "CREATE INDEX idx_document_chunks_content_fts ON document_chunks "
        "USING gin (to_tsvector('english', content))"
    )
    op.execute(
        "CREATE INDEX idx_document_chunks_embedding_hnsw ON document_chunks "
        "USING hnsw (embedding vector_cosine_ops)"
    )


def downgrade() -> None:
    op.drop_table("document_chunks")
    op.drop_table("attempt_questions")
    op.drop_table("mcq_items")
    op.drop_table("user_attempts")
