from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from app.evaluate.constants import DEFAULT_SELECTION_CONFIG, SelectionConfig
from app.evaluate.errors import AssignmentUnavailableError
from app.evaluate.events import EventEmitter
from app.evaluate.store import SelectionStore
from app.evaluate.types import AssignmentOutcome

TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class AssignmentExecutor:
    def __init__(
        self,
        store: SelectionStore,
        *,
        events: EventEmitter,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._events = events
        self._config = config
        self._sleep = sleep

    async def try_assign(
        self,
        attempt_id: UUID,
        question_id: UUID,
        question_order: int,
    ) -> AssignmentOutcome | None:
        """Claim the slot for one question.

        Returns the slot's canonical occupant when the slot is (or already was)
        filled, or None when this question cannot take the slot.
        """
        max_retries = max(1, self._config.assignment_max_retries)
        for retry in range(max_retries):
            try:
                inserted = await self._store.insert_assignment(attempt_id, question_id, question_order)
            except IntegrityError as exc:
                self._events.warning(
                    "question_assignment_rejected",
                    attempt_id=str(attempt_id),
                    question_id=str(question_id),
                    question_order=question_order,
                    error=str(exc.orig) if exc.orig is not None else str(exc),
                )
                return None
            except TRANSIENT_STORE_ERRORS as exc:
                if retry + 1 >= max_retries:
                    self._events.warning(
                        "question_assignment_retries_exhausted",
                        attempt_id=str(attempt_id),
                        question_id=str(question_id),
                        question_order=question_order,
                        error=str(exc),
                    )
                    return None
                delay = self._config.assignment_backoff_base_seconds * (2**retry)
                self._events.warning(
                    "question_assignment_retry",
                    attempt_id=str(attempt_id),
                    question_id=str(question_id),
                    question_order=question_order,
                    retry=retry + 1,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
                continue

            if inserted:
                return AssignmentOutcome(
                    question_id=question_id,
                    question_order=question_order,
                    conflict=False,
                )

            existing = await self._store.assignment_at(attempt_id, question_order)
            if existing is None:
                # The question is already used elsewhere in this attempt.
                return None

            self._events.info(
                "question_assignment_conflict",
                attempt_id=str(attempt_id),
                question_order=question_order,
                attempted_question_id=str(question_id),
                winner_question_id=str(existing.question_id),
            )
            return AssignmentOutcome(
                question_id=existing.question_id,
                question_order=question_order,
                conflict=True,
            )
        return None

    async def assign_first_available(
        self,
        attempt_id: UUID,
        question_order: int,
        candidate_ids: Sequence[UUID],
    ) -> AssignmentOutcome | None:
        for question_id in candidate_ids:
            outcome = await self.try_assign(attempt_id, question_id, question_order)
            if outcome is not None:
                return outcome
        return None

    async def assign_last_resort(self, attempt_id: UUID, question_order: int) -> AssignmentOutcome:
        question_id = await self._store.any_unused_bank_item(attempt_id)
        if question_id is None:
            existing = await self._store.assignment_at(attempt_id, question_order)
            if existing is not None:
                return AssignmentOutcome(
                    question_id=existing.question_id,
                    question_order=question_order,
                    conflict=True,
                )
            self._events.error(
                "fallback_assignment_failed",
                attempt_id=str(attempt_id),
                question_order=question_order,
                reason="bank_exhausted",
            )
            raise AssignmentUnavailableError(f"no unused bank item for attempt {attempt_id}")

        outcome = await self.try_assign(attempt_id, question_id, question_order)
        if outcome is None:
            self._events.error(
                "fallback_assignment_failed",
                attempt_id=str(attempt_id),
                question_order=question_order,
                question_id=str(question_id),
                reason="insert_failed",
            )
            raise AssignmentUnavailableError(
                f"could not assign slot {question_order} for attempt {attempt_id}"
            )
        return outcome
