from __future__ import annotations

from typing import Sequence
from uuid import UUID

from app.evaluate.constants import (
    DEFAULT_SELECTION_CONFIG,
    MATCH_MODE_EXACT,
    MATCH_MODE_SOFT,
    SelectionConfig,
)
from app.evaluate.events import EventEmitter
from app.evaluate.store import SelectionStore
from app.evaluate.types import BankItemView, ScoredCandidate, SelectionCriteria


class BankQueryEngine:
    def __init__(
        self,
        store: SelectionStore,
        *,
        events: EventEmitter,
        match_mode: str = MATCH_MODE_EXACT,
        config: SelectionConfig = DEFAULT_SELECTION_CONFIG,
    ) -> None:
        if match_mode not in (MATCH_MODE_EXACT, MATCH_MODE_SOFT):
            raise ValueError(f"unknown match mode: {match_mode!r}")
        self._store = store
        self._events = events
        self._match_mode = match_mode
        self._config = config

    @property
    def match_mode(self) -> str:
        return self._match_mode

    async def find_candidates(
        self,
        *,
        attempt_id: UUID,
        user_id: str,
        criteria: SelectionCriteria,
        asked_ids: Sequence[UUID],
        overrepresented_topics: Sequence[str],
    ) -> list[ScoredCandidate]:
        items = await self._store.query_bank_items(
            criteria=criteria,
            match_mode=self._match_mode,
            exclude_ids=list(asked_ids),
            exclude_topics=list(overrepresented_topics) if self._match_mode == MATCH_MODE_SOFT else [],
            limit=self._config.bank_page_size,
        )
        asked = set(asked_ids)
        fresh: list[BankItemView] = [item for item in items if item.item_id not in asked]
        if not fresh:
            self._events.info(
                "candidate_pool_primary",
                attempt_id=str(attempt_id),
                match_mode=self._match_mode,
                candidates=0,
            )
            return []

        recent_ids = await self._store.recent_question_ids(
            user_id,
            exclude_attempt_id=attempt_id,
            attempts=self._config.recent_attempts_lookback,
        )
        self._events.info(
            "candidate_pool_primary",
            attempt_id=str(attempt_id),
            match_mode=self._match_mode,
            candidates=len(fresh),
            seen_recently=sum(1 for item in fresh if item.item_id in recent_ids),
        )
        return [ScoredCandidate(item=item, seen_recently=item.item_id in recent_ids) for item in fresh]
