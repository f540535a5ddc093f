from __future__ import annotations

from uuid import UUID, uuid4

from fastapi.testclient import TestClient

from app.api.routes import evaluate as evaluate_routes
from app.evaluate.errors import (
    AssignmentUnavailableError,
    AttemptNotFoundError,
    InvalidSelectionCriteriaError,
)
from app.evaluate.types import AttemptView, NextQuestionResult, NextQuestionView
from app.main import app


def _attempt(attempt_id: UUID, *, status: str = "in_progress", answered: int = 4) -> AttemptView:
    return AttemptView(
        attempt_id=attempt_id,
        user_id="user-1",
        status=status,
        questions_answered=answered,
        correct_count=3,
        total_questions=60,
    )


def _result(attempt_id: UUID) -> NextQuestionResult:
    return NextQuestionResult(
        attempt=_attempt(attempt_id),
        next_question=NextQuestionView(
            question_id=UUID("00000000-0000-0000-0000-00000000000a"),
            question="What does the effect cleanup run before?",
            options=("unmount", "mount", "render", "never"),
            code=None,
            topic="React Hooks",
            subtopic="useEffect",
            difficulty="Medium",
            bloom_level="Understand",
            question_order=5,
            coding_mode=False,
            generated_on_demand=True,
        ),
        method="generated_on_demand",
    )


def _url(attempt_id: UUID) -> str:
    return f"/evaluate/attempts/{attempt_id}/next-question"


def test_next_question_returns_envelope(monkeypatch) -> None:
    attempt_id = uuid4()
    calls: list[tuple[UUID, str]] = []

    async def fake_select(requested_id: UUID, user_id: str) -> NextQuestionResult:
        calls.append((requested_id, user_id))
        return _result(requested_id)

    monkeypatch.setattr(evaluate_routes, "_select_next_question", fake_select)

    client = TestClient(app)
    response = client.get(_url(attempt_id), headers={"X-User-Id": "user-1"})

    assert response.status_code == 200
    assert calls == [(attempt_id, "user-1")]
    payload = response.json()
    assert payload["attempt"] == {
        "id": str(attempt_id),
        "status": "in_progress",
        "questions_answered": 4,
        "correct_count": 3,
        "total_questions": 60,
    }
    assert payload["next_question"]["options"] == ["unmount", "mount", "render", "never"]
    assert payload["next_question"]["metadata"] == {
        "topic": "React Hooks",
        "subtopic": "useEffect",
        "difficulty": "Medium",
        "bloom_level": "Understand",
        "question_order": 5,
        "coding_mode": False,
        "generated_on_demand": True,
    }


def test_completed_attempt_returns_null_question(monkeypatch) -> None:
    attempt_id = uuid4()

    async def fake_select(requested_id: UUID, user_id: str) -> NextQuestionResult:
        return NextQuestionResult(attempt=_attempt(requested_id, status="completed", answered=60), next_question=None)

    monkeypatch.setattr(evaluate_routes, "_select_next_question", fake_select)

    client = TestClient(app)
    response = client.get(_url(attempt_id), headers={"X-User-Id": "user-1"})

    assert response.status_code == 200
    assert response.json()["next_question"] is None
    assert response.json()["attempt"]["status"] == "completed"


def test_missing_user_header_is_unauthorized(monkeypatch) -> None:
    async def fake_select(requested_id: UUID, user_id: str) -> NextQuestionResult:
        raise AssertionError("selection must not run without a user")

    monkeypatch.setattr(evaluate_routes, "_select_next_question", fake_select)

    client = TestClient(app)
    response = client.get(_url(uuid4()), headers={"X-User-Id": "  "})

    assert response.status_code == 401
    assert response.json()["detail"] == {"code": "E_UNAUTHORIZED"}


def _failing(exc: Exception):  # noqa: ANN202
    async def fake_select(requested_id: UUID, user_id: str) -> NextQuestionResult:
        raise exc

    return fake_select


def test_unknown_attempt_is_404(monkeypatch) -> None:
    monkeypatch.setattr(evaluate_routes, "_select_next_question", _failing(AttemptNotFoundError("x")))

    client = TestClient(app)
    response = client.get(_url(uuid4()), headers={"X-User-Id": "user-1"})

    assert response.status_code == 404
    assert response.json()["detail"] == {"code": "E_ATTEMPT_NOT_FOUND"}


def test_invalid_criteria_is_502(monkeypatch) -> None:
    monkeypatch.setattr(
        evaluate_routes,
        "_select_next_question",
        _failing(InvalidSelectionCriteriaError("difficulty missing")),
    )

    client = TestClient(app)
    response = client.get(_url(uuid4()), headers={"X-User-Id": "user-1"})

    assert response.status_code == 502
    assert response.json()["detail"] == {"code": "E_SELECTION_CRITERIA_INVALID"}


def test_unavailable_assignment_is_retryable_503(monkeypatch) -> None:
    monkeypatch.setattr(
        evaluate_routes,
        "_select_next_question",
        _failing(AssignmentUnavailableError("bank exhausted")),
    )

    client = TestClient(app)
    response = client.get(_url(uuid4()), headers={"X-User-Id": "user-1"})

    assert response.status_code == 503
    assert response.json()["detail"] == {"code": "E_ASSIGNMENT_UNAVAILABLE", "retryable": True}


def test_malformed_attempt_id_is_rejected() -> None:
    client = TestClient(app)
    response = client.get("/evaluate/attempts/not-a-uuid/next-question", headers={"X-User-Id": "user-1"})

    assert response.status_code == 422
