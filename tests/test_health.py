import pytest
from fastapi.testclient import TestClient

from app.api.routes import health as health_routes
from app.main import app


async def _ok_check() -> dict[str, str]:
    return {"status": "ok", "pgvector": "0.7.0"}


def test_health_ok(monkeypatch) -> None:
    monkeypatch.setattr(health_routes, "_check_database", _ok_check)

    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "checks": {
            "database": {"status": "ok", "pgvector": "0.7.0"},
        },
    }


def test_live_ok() -> None:
    client = TestClient(app)
    response = client.get("/live")
    assert response.status_code == 200
    assert response.json() == {"status": "live"}


def test_health_returns_503_when_database_failed(monkeypatch) -> None:
    async def _failed_database() -> dict[str, str]:
        return {"status": "failed", "error": "database_unavailable"}

    monkeypatch.setattr(health_routes, "_check_database", _failed_database)

    client = TestClient(app)
    response = client.get("/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["checks"]["database"]["error"] == "database_unavailable"


def test_ready_ok(monkeypatch) -> None:
    monkeypatch.setattr(health_routes, "_check_database", _ok_check)

    client = TestClient(app)
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_ready_returns_503_when_database_failed(monkeypatch) -> None:
    async def _failed_database() -> dict[str, str]:
        return {"status": "failed", "error": "database_unavailable"}

    monkeypatch.setattr(health_routes, "_check_database", _failed_database)

    client = TestClient(app)
    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


@pytest.mark.asyncio
async def test_database_check_sanitizes_exception(monkeypatch) -> None:
    class _BrokenSession:
        async def __aenter__(self):
            raise RuntimeError("password=secret")

        async def __aexit__(self, exc_type, exc, tb) -> bool:
            return False

    monkeypatch.setattr(health_routes, "SessionLocal", lambda: _BrokenSession())

    result = await health_routes._check_database()
    assert result == {"status": "failed", "error": "database_unavailable"}


@pytest.mark.asyncio
async def test_database_check_requires_pgvector(monkeypatch) -> None:
    class _Result:
        def __init__(self, value) -> None:
            self._value = value

        def scalar_one_or_none(self):
            return self._value

    class _Session:
        def __init__(self) -> None:
            self.calls = 0

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb) -> bool:
            return False

        async def execute(self, statement):
            self.calls += 1
            return _Result(1 if self.calls == 1 else None)

    monkeypatch.setattr(health_routes, "SessionLocal", lambda: _Session())

    result = await health_routes._check_database()
    assert result == {"status": "failed", "error": "pgvector extension is not installed"}
