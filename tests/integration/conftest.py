from __future__ import annotations

import pytest
from sqlalchemy import text

from app.core.integration_db_safety import assert_safe_integration_db
from app.db.session import engine

TRUNCATE_TABLES = (
    "attempt_questions",
    "user_attempts",
    "mcq_items",
    "document_chunks",
)

TRUNCATE_SQL = f"TRUNCATE TABLE {', '.join(TRUNCATE_TABLES)} RESTART IDENTITY CASCADE"
VECTOR_EXTENSION_SQL = "SELECT EXISTS (SELECT 1 FROM pg_extension WHERE extname = 'vector')"


@pytest.fixture(scope="session", autouse=True)
def guard_integration_db_target() -> None:
    assert_safe_integration_db(str(engine.url))


@pytest.fixture(autouse=True)
async def cleanup_db() -> None:
    # Dispose pooled connections between tests to avoid cross-event-loop asyncpg reuse.
    await engine.dispose()

    try:
        async with engine.connect() as conn:
            has_vector = await conn.scalar(text(VECTOR_EXTENSION_SQL))
    except Exception as exc:  # pragma: no cover - environment-dependent
        pytest.skip(f"Postgres is required for integration tests: {exc}")
    if not has_vector:  # pragma: no cover - environment-dependent
        pytest.skip("pgvector extension is not installed; run alembic upgrade head")

    async with engine.begin() as conn:
        await conn.execute(text(TRUNCATE_SQL))

    yield

    await engine.dispose()
