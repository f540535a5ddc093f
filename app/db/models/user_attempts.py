from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class UserAttempt(Base):
    __tablename__ = "user_attempts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress','completed','abandoned')",
            name="ck_user_attempts_status",
        ),
        CheckConstraint(
            "questions_answered >= 0 AND questions_answered <= total_questions",
            name="ck_user_attempts_answered_range",
        ),
        CheckConstraint("correct_count >= 0", name="ck_user_attempts_correct_non_negative"),
        Index("idx_user_attempts_user_status", "user_id", "status"),
        Index("idx_user_attempts_user_completed", "user_id", "completed_at"),
    )

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        server_default=text("'in_progress'"),
    )
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("60"))
    questions_answered: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    correct_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    pause_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
