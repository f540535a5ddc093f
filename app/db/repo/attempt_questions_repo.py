from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.attempt_questions import AttemptQuestion
from app.db.models.mcq_items import McqItem


class AttemptQuestionsRepo:
    @staticmethod
    async def list_with_items(
        session: AsyncSession,
        *,
        attempt_id: UUID,
    ) -> list[tuple[AttemptQuestion, McqItem]]:
        stmt = (
            select(AttemptQuestion, McqItem)
            .join(McqItem, McqItem.id == AttemptQuestion.question_id)
            .where(AttemptQuestion.attempt_id == attempt_id)
            .order_by(AttemptQuestion.question_order.asc())
        )
        result = await session.execute(stmt)
        return [(assignment, item) for assignment, item in result.all()]

    @staticmethod
    async def get_by_order(
        session: AsyncSession,
        *,
        attempt_id: UUID,
        question_order: int,
    ) -> AttemptQuestion | None:
        stmt = select(AttemptQuestion).where(
            AttemptQuestion.attempt_id == attempt_id,
            AttemptQuestion.question_order == question_order,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create(
        session: AsyncSession,
        *,
        attempt_id: UUID,
        question_id: UUID,
        question_order: int,
    ) -> bool:
        # Either unique constraint (slot or question) turns the insert into a no-op.
        stmt = (
            postgresql_insert(AttemptQuestion)
            .values(
                attempt_id=attempt_id,
                question_id=question_id,
                question_order=question_order,
            )
            .on_conflict_do_nothing()
            .returning(AttemptQuestion.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def list_question_ids_for_attempts(
        session: AsyncSession,
        *,
        attempt_ids: Sequence[UUID],
    ) -> list[UUID]:
        if not attempt_ids:
            return []
        stmt = select(AttemptQuestion.question_id).where(
            AttemptQuestion.attempt_id.in_(list(attempt_ids))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
