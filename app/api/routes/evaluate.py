from __future__ import annotations

import random
from uuid import UUID

import structlog
from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.db.session import SessionLocal
from app.evaluate.errors import (
    AssignmentUnavailableError,
    AttemptNotFoundError,
    InvalidSelectionCriteriaError,
)
from app.evaluate.events import StructlogEventEmitter
from app.evaluate.orchestrator import SelectionOrchestrator
from app.evaluate.store import SqlSelectionStore
from app.evaluate.types import NextQuestionResult
from app.services.embeddings import OpenAIEmbeddingService
from app.services.mcq_generation import OpenAIItemGenerator
from app.services.question_selector import OpenAICriteriaSource

router = APIRouter(tags=["evaluate"])
logger = structlog.get_logger(__name__)


class AttemptResponse(BaseModel):
    id: UUID
    status: str
    questions_answered: int = Field(ge=0)
    correct_count: int = Field(ge=0)
    total_questions: int = Field(ge=1)


class NextQuestionMetadataResponse(BaseModel):
    topic: str
    subtopic: str | None = None
    difficulty: str
    bloom_level: str
    question_order: int = Field(ge=1)
    coding_mode: bool
    generated_on_demand: bool | None = None


class NextQuestionResponse(BaseModel):
    id: UUID
    question: str
    options: list[str]
    code: str | None = None
    metadata: NextQuestionMetadataResponse


class NextQuestionEnvelopeResponse(BaseModel):
    attempt: AttemptResponse
    next_question: NextQuestionResponse | None = None


def build_orchestrator(session: AsyncSession) -> SelectionOrchestrator:
    settings = get_settings()
    return SelectionOrchestrator(
        SqlSelectionStore(session),
        criteria_source=OpenAICriteriaSource(),
        embedder=OpenAIEmbeddingService(),
        generator=OpenAIItemGenerator(),
        events=StructlogEventEmitter(),
        rng=random.Random(),
        match_mode=settings.evaluate_match_mode,
    )


async def _select_next_question(attempt_id: UUID, user_id: str) -> NextQuestionResult:
    async with SessionLocal.begin() as session:
        orchestrator = build_orchestrator(session)
        return await orchestrator.get_next_question(attempt_id, user_id)


def _to_response(result: NextQuestionResult) -> NextQuestionEnvelopeResponse:
    attempt = result.attempt
    next_question = None
    if result.next_question is not None:
        view = result.next_question
        next_question = NextQuestionResponse(
            id=view.question_id,
            question=view.question,
            options=list(view.options),
            code=view.code,
            metadata=NextQuestionMetadataResponse(
                topic=view.topic,
                subtopic=view.subtopic,
                difficulty=view.difficulty,
                bloom_level=view.bloom_level,
                question_order=view.question_order,
                coding_mode=view.coding_mode,
                generated_on_demand=view.generated_on_demand,
            ),
        )
    return NextQuestionEnvelopeResponse(
        attempt=AttemptResponse(
            id=attempt.attempt_id,
            status=attempt.status,
            questions_answered=attempt.questions_answered,
            correct_count=attempt.correct_count,
            total_questions=attempt.total_questions,
        ),
        next_question=next_question,
    )


@router.get(
    "/evaluate/attempts/{attempt_id}/next-question",
    response_model=NextQuestionEnvelopeResponse,
)
async def get_next_question(
    attempt_id: UUID,
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> NextQuestionEnvelopeResponse:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHORIZED"})

    try:
        result = await _select_next_question(attempt_id, user_id)
    except AttemptNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_ATTEMPT_NOT_FOUND"}) from exc
    except InvalidSelectionCriteriaError as exc:
        logger.error("selection_criteria_invalid", attempt_id=str(attempt_id), error=str(exc))
        raise HTTPException(status_code=502, detail={"code": "E_SELECTION_CRITERIA_INVALID"}) from exc
    except AssignmentUnavailableError as exc:
        logger.error("next_question_unavailable", attempt_id=str(attempt_id), error=str(exc))
        raise HTTPException(
            status_code=503,
            detail={"code": "E_ASSIGNMENT_UNAVAILABLE", "retryable": True},
        ) from exc
    return _to_response(result)
