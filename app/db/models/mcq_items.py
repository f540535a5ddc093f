from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pgvector.sqlalchemy import Vector
from sqlalchemy import CheckConstraint, DateTime, Index, SmallInteger, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base

EMBEDDING_DIMENSIONS = 1536


class McqItem(Base):
    __tablename__ = "mcq_items"
    __table_args__ = (
        CheckConstraint(
            "difficulty IN ('Easy','Medium','Hard')",
            name="ck_mcq_items_difficulty",
        ),
        CheckConstraint(
            "bloom_level IN ('Remember','Understand','Apply','Analyze','Evaluate','Create')",
            name="ck_mcq_items_bloom_level",
        ),
        CheckConstraint(
            "correct_index >= 0 AND correct_index <= 3",
            name="ck_mcq_items_correct_index_range",
        ),
        CheckConstraint(
            "jsonb_array_length(options) <= 4",
            name="ck_mcq_items_options_max_four",
        ),
        Index("uq_mcq_items_content_key", "content_key", unique=True),
        Index("idx_mcq_items_selection", "difficulty", "topic", "bloom_level"),
        Index("idx_mcq_items_topic_subtopic", "topic", "subtopic"),
    )

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    topic: Mapped[str] = mapped_column(String(128), nullable=False)
    subtopic: Mapped[str | None] = mapped_column(String(128), nullable=True)
    version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    difficulty: Mapped[str] = mapped_column(String(8), nullable=False)
    bloom_level: Mapped[str] = mapped_column(String(16), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[str]] = mapped_column(JSONB, nullable=False)
    correct_index: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    code: Mapped[str | None] = mapped_column(Text, nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    citations: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'[]'::jsonb"),
    )
    content_key: Mapped[str] = mapped_column(String(64), nullable=False)
    embedding: Mapped[Any | None] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
