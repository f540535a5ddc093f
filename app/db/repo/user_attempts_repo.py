from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.user_attempts import UserAttempt


class UserAttemptsRepo:
    @staticmethod
    async def get_for_user(
        session: AsyncSession,
        *,
        attempt_id: UUID,
        user_id: str,
    ) -> UserAttempt | None:
        stmt = select(UserAttempt).where(
            UserAttempt.id == attempt_id,
            UserAttempt.user_id == user_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_recent_completed_ids(
        session: AsyncSession,
        *,
        user_id: str,
        exclude_attempt_id: UUID | None,
        limit: int,
    ) -> list[UUID]:
        stmt = (
            select(UserAttempt.id)
            .where(
                UserAttempt.user_id == user_id,
                UserAttempt.status == "completed",
            )
            .order_by(UserAttempt.completed_at.desc().nulls_last(), UserAttempt.id.asc())
            .limit(max(1, int(limit)))
        )
        if exclude_attempt_id is not None:
            stmt = stmt.where(UserAttempt.id != exclude_attempt_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())
