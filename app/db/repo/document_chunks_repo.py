from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.document_chunks import DocumentChunk


class DocumentChunksRepo:
    @staticmethod
    async def hybrid_retrieve(
        session: AsyncSession,
        *,
        user_id: str | None,
        topic: str,
        subtopic: str | None,
        query_text: str,
        query_embedding: Sequence[float],
        k: int,
        alpha: float,
    ) -> list[DocumentChunk]:
        vector_score = 1 - DocumentChunk.embedding.cosine_distance(list(query_embedding))
        text_score = func.ts_rank(
            func.to_tsvector("english", DocumentChunk.content),
            func.plainto_tsquery("english", query_text),
        )
        blended = literal(alpha) * vector_score + literal(1 - alpha) * text_score

        stmt = (
            select(DocumentChunk)
            .where(
                DocumentChunk.embedding.is_not(None),
                func.lower(DocumentChunk.topic) == topic.lower(),
            )
            .order_by(blended.desc(), DocumentChunk.id.asc())
            .limit(max(1, int(k)))
        )
        if subtopic:
            stmt = stmt.where(
                or_(func.lower(DocumentChunk.subtopic) == subtopic.lower(), DocumentChunk.subtopic.is_(None))
            )
        if user_id is not None:
            stmt = stmt.where(or_(DocumentChunk.user_id == user_id, DocumentChunk.user_id.is_(None)))
        result = await session.execute(stmt)
        return list(result.scalars().all())
