from __future__ import annotations

import random
from typing import Sequence
from uuid import UUID

from app.evaluate.assignment import AssignmentExecutor
from app.evaluate.bank_query import BankQueryEngine
from app.evaluate.constants import (
    ATTEMPT_STATUS_COMPLETED,
    DEFAULT_SELECTION_CONFIG,
    MATCH_MODE_EXACT,
    METHOD_BANK_TOPK,
    METHOD_EXISTING_PENDING,
    METHOD_FALLBACK_ASSIGNMENT,
    METHOD_GENERATED_ON_DEMAND,
    SelectionConfig,
)
from app.evaluate.criteria import CriteriaSelector, CriteriaSource
from app.evaluate.distributions import build_selection_context, calculate_distributions
from app.evaluate.errors import AssignmentUnavailableError, AttemptNotFoundError
from app.evaluate.events import EventEmitter
from app.evaluate.generation import Accepted, Embedder, GenerationFallback, ItemGenerator
from app.evaluate.scoring import CandidateScorer
from app.evaluate.similarity import SimilarityGate
from app.evaluate.store import SelectionStore
from app.evaluate.types import (
    AskedQuestion,
    AssignmentOutcome,
    AttemptView,
    BankItemView,
    NextQuestionResult,
    NextQuestionView,
    SelectionCriteria,
)


def to_next_question_view(
    item: BankItemView,
    *,
    question_order: int,
    coding_mode: bool,
    generated_on_demand: bool | None = None,
) -> NextQuestionView:
    return NextQuestionView(
        question_id=item.item_id,
        question=item.question,
        options=item.options,
        code=item.code,
        topic=item.topic,
        subtopic=item.subtopic,
        difficulty=item.difficulty,
        bloom_level=item.bloom_level,
        question_order=question_order,
        coding_mode=coding_mode,
        generated_on_demand=generated_on_demand,
    )


class SelectionOrchestrator:
    """Produces the next question for an attempt.

    Flow: guard -> pending check -> context -> bank query -> score and assign,
    or generate and assign when the bank has nothing. Every path ends with the
    slot at ``questions_answered + 1`` holding exactly one question, whichever
    concurrent request won it.
    """

    def __init__(
        self,
        store: SelectionStore,
        *,
        criteria_source: CriteriaSource,
        embedder: Embedder,
        generator: ItemGenerator,
        events: EventEmitter,
        rng: random.Random | None = None,
        match_mode: str = MATCH_MODE_EXACT,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
    ) -> None:
        self._store = store
        self._events = events
        self._config = config
        rng = rng if rng is not None else random.Random()
        gate = SimilarityGate(store, events=events, config=config)
        self._criteria = CriteriaSelector(criteria_source, rng=rng, events=events)
        self._bank = BankQueryEngine(store, events=events, match_mode=match_mode, config=config)
        self._scorer = CandidateScorer(gate, rng=rng, match_mode=match_mode, config=config)
        self._executor = AssignmentExecutor(store, events=events, config=config)
        self._generation = GenerationFallback(
            store,
            embedder=embedder,
            generator=generator,
            gate=gate,
            rng=rng,
            events=events,
            config=config,
        )

    async def get_next_question(self, attempt_id: UUID, user_id: str) -> NextQuestionResult:
        attempt = await self._store.get_attempt(attempt_id, user_id)
        if attempt is None:
            raise AttemptNotFoundError(str(attempt_id))
        if (
            attempt.status == ATTEMPT_STATUS_COMPLETED
            or attempt.questions_answered >= attempt.total_questions
        ):
            return NextQuestionResult(attempt=attempt, next_question=None)

        question_order = attempt.questions_answered + 1
        asked = await self._store.list_asked(attempt_id)

        pending = await self._pending_question(attempt, asked, question_order)
        if pending is not None:
            return pending

        distributions = calculate_distributions(asked)
        context = build_selection_context(
            attempt_id,
            questions_answered=attempt.questions_answered,
            total_questions=attempt.total_questions,
            distributions=distributions,
            config=self._config,
        )
        self._events.info(
            "selection_input",
            attempt_id=str(attempt_id),
            question_order=question_order,
            asked=len(asked),
            coding=distributions.coding,
            overrepresented_topics=context.overrepresented_topics,
        )
        criteria = await self._criteria.select(context)

        asked_ids = [entry.item.item_id for entry in asked]
        candidates = await self._bank.find_candidates(
            attempt_id=attempt_id,
            user_id=user_id,
            criteria=criteria,
            asked_ids=asked_ids,
            overrepresented_topics=context.overrepresented_topics,
        )

        if not candidates:
            generated = await self._generation.generate(
                attempt=attempt,
                criteria=criteria,
                asked=asked,
                distributions=distributions,
                overrepresented_topics=context.overrepresented_topics,
            )
            if isinstance(generated, Accepted):
                outcome = await self._executor.try_assign(attempt_id, generated.item_id, question_order)
                if outcome is not None:
                    return await self._respond(
                        attempt,
                        outcome,
                        criteria=criteria,
                        method=METHOD_GENERATED_ON_DEMAND,
                        own_question_id=generated.item_id,
                    )
            return await self._last_resort(attempt, question_order, criteria)

        ranked = await self._scorer.score(
            candidates,
            criteria=criteria,
            distributions=distributions,
            questions_answered=attempt.questions_answered,
            asked_embeddings=[entry.item.embedding for entry in asked],
        )
        ordered = self._scorer.assignment_order(ranked)
        outcome = await self._executor.assign_first_available(
            attempt_id,
            question_order,
            [candidate.item.item_id for candidate in ordered],
        )
        if outcome is None:
            return await self._last_resort(attempt, question_order, criteria)
        return await self._respond(attempt, outcome, criteria=criteria, method=METHOD_BANK_TOPK)

    async def _pending_question(
        self,
        attempt: AttemptView,
        asked: Sequence[AskedQuestion],
        question_order: int,
    ) -> NextQuestionResult | None:
        for entry in asked:
            if entry.assignment.question_order != question_order or not entry.assignment.is_pending:
                continue
            item = entry.item
            if not item.options:
                refreshed = await self._store.get_bank_item(item.item_id)
                if refreshed is not None:
                    item = refreshed
            self._log_selected(attempt, question_order, item.item_id, METHOD_EXISTING_PENDING)
            return NextQuestionResult(
                attempt=attempt,
                next_question=to_next_question_view(
                    item,
                    question_order=question_order,
                    coding_mode=item.has_code,
                ),
                method=METHOD_EXISTING_PENDING,
            )
        return None

    async def _last_resort(
        self,
        attempt: AttemptView,
        question_order: int,
        criteria: SelectionCriteria,
    ) -> NextQuestionResult:
        outcome = await self._executor.assign_last_resort(attempt.attempt_id, question_order)
        return await self._respond(
            attempt,
            outcome,
            criteria=criteria,
            method=METHOD_FALLBACK_ASSIGNMENT,
        )

    async def _respond(
        self,
        attempt: AttemptView,
        outcome: AssignmentOutcome,
        *,
        criteria: SelectionCriteria,
        method: str,
        own_question_id: UUID | None = None,
    ) -> NextQuestionResult:
        item = await self._store.get_bank_item(outcome.question_id)
        if item is None:
            raise AssignmentUnavailableError(f"assigned question {outcome.question_id} disappeared")

        generated_on_demand = None
        if method == METHOD_GENERATED_ON_DEMAND and outcome.question_id == own_question_id:
            generated_on_demand = True
        resolved_method = method if not outcome.conflict else f"{method}_conflict"
        self._log_selected(attempt, outcome.question_order, item.item_id, resolved_method)
        return NextQuestionResult(
            attempt=attempt,
            next_question=to_next_question_view(
                item,
                question_order=outcome.question_order,
                coding_mode=(
                    item.has_code
                    if outcome.conflict or method == METHOD_FALLBACK_ASSIGNMENT
                    else criteria.coding_mode
                ),
                generated_on_demand=generated_on_demand,
            ),
            method=method,
        )

    def _log_selected(
        self,
        attempt: AttemptView,
        question_order: int,
        question_id: UUID,
        method: str,
    ) -> None:
        self._events.info(
            "question_selected",
            attempt_id=str(attempt.attempt_id),
            question_order=question_order,
            question_id=str(question_id),
            method=method,
        )
