from __future__ import annotations

from typing import Protocol, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.attempt_questions import AttemptQuestion
from app.db.models.mcq_items import McqItem
from app.db.models.user_attempts import UserAttempt
from app.db.repo.attempt_questions_repo import AttemptQuestionsRepo
from app.db.repo.document_chunks_repo import DocumentChunksRepo
from app.db.repo.mcq_items_repo import McqItemsRepo
from app.db.repo.user_attempts_repo import UserAttemptsRepo
from app.evaluate.constants import MATCH_MODE_EXACT
from app.evaluate.types import (
    AskedQuestion,
    AssignmentView,
    AttemptView,
    BankItemView,
    ContextItem,
    NeighborHit,
    NewBankItem,
    SelectionCriteria,
)
from app.evaluate.vectors import to_vector


class SelectionStore(Protocol):
    async def get_attempt(self, attempt_id: UUID, user_id: str) -> AttemptView | None: ...

    async def list_asked(self, attempt_id: UUID) -> list[AskedQuestion]: ...

    async def get_bank_item(self, item_id: UUID) -> BankItemView | None: ...

    async def query_bank_items(
        self,
        *,
        criteria: SelectionCriteria,
        match_mode: str,
        exclude_ids: Sequence[UUID],
        exclude_topics: Sequence[str],
        limit: int,
    ) -> list[BankItemView]: ...

    async def recent_question_ids(
        self,
        user_id: str,
        *,
        exclude_attempt_id: UUID,
        attempts: int,
    ) -> set[UUID]: ...

    async def insert_assignment(
        self,
        attempt_id: UUID,
        question_id: UUID,
        question_order: int,
    ) -> bool: ...

    async def assignment_at(self, attempt_id: UUID, question_order: int) -> AssignmentView | None: ...

    async def any_unused_bank_item(self, attempt_id: UUID) -> UUID | None: ...

    async def insert_bank_item(self, item: NewBankItem) -> UUID | None: ...

    async def bank_item_by_content_key(self, content_key: str) -> UUID | None: ...

    async def nearest_neighbors(
        self,
        *,
        embedding: Sequence[float],
        topic: str,
        subtopic: str | None,
        k: int,
        exclude_ids: Sequence[UUID] = (),
    ) -> list[NeighborHit]: ...

    async def hybrid_retrieve(
        self,
        *,
        user_id: str | None,
        topic: str,
        subtopic: str | None,
        query_text: str,
        query_embedding: Sequence[float],
        k: int,
        alpha: float,
    ) -> list[ContextItem]: ...


def attempt_view_from_record(record: UserAttempt) -> AttemptView:
    return AttemptView(
        attempt_id=record.id,
        user_id=record.user_id,
        status=record.status,
        questions_answered=int(record.questions_answered or 0),
        correct_count=int(record.correct_count or 0),
        total_questions=int(record.total_questions),
    )


def bank_item_view_from_record(record: McqItem) -> BankItemView:
    return BankItemView(
        item_id=record.id,
        topic=record.topic,
        subtopic=record.subtopic or None,
        difficulty=record.difficulty,
        bloom_level=record.bloom_level,
        question=record.question,
        options=tuple(str(option) for option in (record.options or [])),
        code=record.code,
        embedding=to_vector(record.embedding),
        content_key=record.content_key,
    )


def assignment_view_from_record(record: AttemptQuestion) -> AssignmentView:
    return AssignmentView(
        attempt_id=record.attempt_id,
        question_id=record.question_id,
        question_order=record.question_order,
        user_answer_index=record.user_answer_index,
        answered_at=record.answered_at,
    )


class SqlSelectionStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_attempt(self, attempt_id: UUID, user_id: str) -> AttemptView | None:
        record = await UserAttemptsRepo.get_for_user(
            self._session,
            attempt_id=attempt_id,
            user_id=user_id,
        )
        return attempt_view_from_record(record) if record is not None else None

    async def list_asked(self, attempt_id: UUID) -> list[AskedQuestion]:
        rows = await AttemptQuestionsRepo.list_with_items(self._session, attempt_id=attempt_id)
        return [
            AskedQuestion(
                assignment=assignment_view_from_record(assignment),
                item=bank_item_view_from_record(item),
            )
            for assignment, item in rows
        ]

    async def get_bank_item(self, item_id: UUID) -> BankItemView | None:
        record = await McqItemsRepo.get_by_id(self._session, item_id)
        return bank_item_view_from_record(record) if record is not None else None

    async def query_bank_items(
        self,
        *,
        criteria: SelectionCriteria,
        match_mode: str,
        exclude_ids: Sequence[UUID],
        exclude_topics: Sequence[str],
        limit: int,
    ) -> list[BankItemView]:
        if match_mode == MATCH_MODE_EXACT:
            records = await McqItemsRepo.list_exact_candidates(
                self._session,
                difficulty=criteria.difficulty,
                topic=criteria.preferred_topic,
                subtopic=criteria.preferred_subtopic,
                bloom_level=criteria.bloom_level,
                coding=criteria.coding_mode,
                exclude_ids=exclude_ids,
                limit=limit,
            )
        else:
            records = await McqItemsRepo.list_soft_candidates(
                self._session,
                difficulty=criteria.difficulty,
                coding_mode=criteria.coding_mode,
                exclude_topics=exclude_topics,
                exclude_ids=exclude_ids,
                limit=limit,
            )
        return [bank_item_view_from_record(record) for record in records]

    async def recent_question_ids(
        self,
        user_id: str,
        *,
        exclude_attempt_id: UUID,
        attempts: int,
    ) -> set[UUID]:
        attempt_ids = await UserAttemptsRepo.list_recent_completed_ids(
            self._session,
            user_id=user_id,
            exclude_attempt_id=exclude_attempt_id,
            limit=attempts,
        )
        question_ids = await AttemptQuestionsRepo.list_question_ids_for_attempts(
            self._session,
            attempt_ids=attempt_ids,
        )
        return set(question_ids)

    async def insert_assignment(
        self,
        attempt_id: UUID,
        question_id: UUID,
        question_order: int,
    ) -> bool:
        async with self._session.begin_nested():
            return await AttemptQuestionsRepo.try_create(
                self._session,
                attempt_id=attempt_id,
                question_id=question_id,
                question_order=question_order,
            )

    async def assignment_at(self, attempt_id: UUID, question_order: int) -> AssignmentView | None:
        record = await AttemptQuestionsRepo.get_by_order(
            self._session,
            attempt_id=attempt_id,
            question_order=question_order,
        )
        return assignment_view_from_record(record) if record is not None else None

    async def any_unused_bank_item(self, attempt_id: UUID) -> UUID | None:
        return await McqItemsRepo.get_first_unused_id_for_attempt(self._session, attempt_id=attempt_id)

    async def insert_bank_item(self, item: NewBankItem) -> UUID | None:
        draft = item.draft
        async with self._session.begin_nested():
            return await McqItemsRepo.create_if_absent(
                self._session,
                values={
                    "user_id": item.owner_user_id,
                    "topic": draft.topic,
                    "subtopic": draft.subtopic,
                    "difficulty": draft.difficulty,
                    "bloom_level": draft.bloom_level,
                    "question": draft.question,
                    "options": list(draft.options),
                    "correct_index": draft.correct_index,
                    "code": draft.code,
                    "explanation": draft.explanation,
                    "citations": [dict(citation) for citation in draft.citations],
                    "content_key": item.content_key,
                    "embedding": list(item.embedding) if item.embedding is not None else None,
                },
            )

    async def bank_item_by_content_key(self, content_key: str) -> UUID | None:
        return await McqItemsRepo.get_id_by_content_key(self._session, content_key=content_key)

    async def nearest_neighbors(
        self,
        *,
        embedding: Sequence[float],
        topic: str,
        subtopic: str | None,
        k: int,
        exclude_ids: Sequence[UUID] = (),
    ) -> list[NeighborHit]:
        async with self._session.begin_nested():
            rows = await McqItemsRepo.list_nearest_neighbors(
                self._session,
                embedding=embedding,
                topic=topic,
                subtopic=subtopic,
                k=k,
                exclude_ids=exclude_ids,
            )
        return [NeighborHit(item_id=item_id, score=score) for item_id, score in rows]

    async def hybrid_retrieve(
        self,
        *,
        user_id: str | None,
        topic: str,
        subtopic: str | None,
        query_text: str,
        query_embedding: Sequence[float],
        k: int,
        alpha: float,
    ) -> list[ContextItem]:
        async with self._session.begin_nested():
            chunks = await DocumentChunksRepo.hybrid_retrieve(
                self._session,
                user_id=user_id,
                topic=topic,
                subtopic=subtopic,
                query_text=query_text,
                query_embedding=query_embedding,
                k=k,
                alpha=alpha,
            )
        return [
            ContextItem(
                title=chunk.title or chunk.path,
                url=f"{chunk.bucket}/{chunk.path}" if chunk.bucket else chunk.path,
                content=chunk.content,
            )
            for chunk in chunks
        ]
