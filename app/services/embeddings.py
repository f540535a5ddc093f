from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

import openai
import structlog
from openai import AsyncOpenAI

from app.core.config import get_settings
from app.evaluate.errors import ExternalServiceError
from app.services.openai_client import get_openai_client

logger = structlog.get_logger("app.services.embeddings")

MAX_INPUT_CHARS = 8000
MAX_BATCH_SIZE = 256
MAX_RETRIES = 2
BACKOFF_BASE_SECONDS = 0.5

_RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.InternalServerError,
    openai.APIConnectionError,
)


def _batches(texts: Sequence[str], size: int) -> list[list[str]]:
    return [list(texts[start : start + size]) for start in range(0, len(texts), size)]


class OpenAIEmbeddingService:
    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        *,
        model: str | None = None,
        batch_size: int | None = None,
        dimensions: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._client_factory = client_factory
        self._model = model or settings.openai_embedding_model
        self._batch_size = max(1, min(MAX_BATCH_SIZE, batch_size or settings.embedding_batch_size))
        self._dimensions = dimensions or settings.embedding_dimensions
        self._sleep = sleep

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        prepared = [(text or "")[:MAX_INPUT_CHARS] for text in texts]
        vectors: list[list[float]] = []
        for batch in _batches(prepared, self._batch_size):
            vectors.extend(await self._embed_batch(batch))
        return vectors

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        client = self._client_factory()
        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await client.embeddings.create(
                    model=self._model,
                    input=batch,
                    dimensions=self._dimensions,
                )
            except _RETRYABLE_ERRORS as exc:
                if attempt >= MAX_RETRIES:
                    logger.warning(
                        "embedding_request_failed",
                        model=self._model,
                        batch_size=len(batch),
                        attempts=attempt + 1,
                        error=str(exc),
                    )
                    raise ExternalServiceError(f"embedding request failed: {exc}") from exc
                delay = BACKOFF_BASE_SECONDS * (2**attempt)
                logger.info(
                    "embedding_request_retry",
                    model=self._model,
                    retry=attempt + 1,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
                continue
            except openai.OpenAIError as exc:
                raise ExternalServiceError(f"embedding request rejected: {exc}") from exc

            ordered = sorted(response.data, key=lambda item: item.index)
            return [list(item.embedding) for item in ordered]
        raise ExternalServiceError("embedding request failed")
