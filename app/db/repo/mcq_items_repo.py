from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.attempt_questions import AttemptQuestion
from app.db.models.mcq_items import McqItem


def _has_code_clause():
    return and_(McqItem.code.is_not(None), func.length(func.trim(McqItem.code)) > 0)


def _no_code_clause():
    return or_(McqItem.code.is_(None), func.length(func.trim(McqItem.code)) == 0)


class McqItemsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, item_id: UUID) -> McqItem | None:
        return await session.get(McqItem, item_id)

    @staticmethod
    async def list_exact_candidates(
        session: AsyncSession,
        *,
        difficulty: str,
        topic: str,
        subtopic: str | None,
        bloom_level: str,
        coding: bool,
        exclude_ids: Sequence[UUID],
        limit: int,
    ) -> list[McqItem]:
        stmt = select(McqItem).where(
            McqItem.difficulty == difficulty,
            McqItem.topic == topic,
            McqItem.bloom_level == bloom_level,
            McqItem.subtopic == subtopic if subtopic else McqItem.subtopic.is_(None),
            _has_code_clause() if coding else _no_code_clause(),
        )
        if exclude_ids:
            stmt = stmt.where(McqItem.id.not_in(list(exclude_ids)))
        stmt = stmt.order_by(McqItem.created_at.desc(), McqItem.id.asc()).limit(max(1, int(limit)))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_soft_candidates(
        session: AsyncSession,
        *,
        difficulty: str,
        coding_mode: bool,
        exclude_topics: Sequence[str],
        exclude_ids: Sequence[UUID],
        limit: int,
    ) -> list[McqItem]:
        stmt = select(McqItem).where(McqItem.difficulty == difficulty)
        if coding_mode:
            stmt = stmt.where(_has_code_clause())
        if exclude_topics:
            stmt = stmt.where(McqItem.topic.not_in(list(exclude_topics)))
        if exclude_ids:
            stmt = stmt.where(McqItem.id.not_in(list(exclude_ids)))
        stmt = stmt.order_by(McqItem.created_at.desc(), McqItem.id.asc()).limit(max(1, int(limit)))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def create_if_absent(
        session: AsyncSession,
        *,
        values: dict[str, Any],
    ) -> UUID | None:
        stmt = (
            postgresql_insert(McqItem)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[McqItem.content_key])
            .returning(McqItem.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_id_by_content_key(session: AsyncSession, *, content_key: str) -> UUID | None:
        stmt = select(McqItem.id).where(McqItem.content_key == content_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_nearest_neighbors(
        session: AsyncSession,
        *,
        embedding: Sequence[float],
        topic: str,
        subtopic: str | None,
        k: int,
        exclude_ids: Sequence[UUID] = (),
    ) -> list[tuple[UUID, float]]:
        distance = McqItem.embedding.cosine_distance(list(embedding))
        stmt = (
            select(McqItem.id, (1 - distance).label("score"))
            .where(McqItem.embedding.is_not(None), McqItem.topic == topic)
            .order_by(distance.asc())
            .limit(max(1, int(k)))
        )
        if subtopic:
            stmt = stmt.where(McqItem.subtopic == subtopic)
        if exclude_ids:
            stmt = stmt.where(McqItem.id.not_in(list(exclude_ids)))
        result = await session.execute(stmt)
        return [(item_id, float(score or 0.0)) for item_id, score in result.all()]

    @staticmethod
    async def get_first_unused_id_for_attempt(
        session: AsyncSession,
        *,
        attempt_id: UUID,
    ) -> UUID | None:
        already_assigned = exists().where(
            AttemptQuestion.attempt_id == attempt_id,
            AttemptQuestion.question_id == McqItem.id,
        )
        stmt = (
            select(McqItem.id)
            .where(~already_assigned)
            .order_by(McqItem.created_at.asc(), McqItem.id.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
