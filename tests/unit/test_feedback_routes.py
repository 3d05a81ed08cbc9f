"""
Tests for the feedback HTTP routes.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from feedback_portal.features.feedback_window.api.router import get_feedback_session
from feedback_portal.features.feedback_window.domain.errors import (
    AlreadySubmitted,
    IncompleteAnswers,
    NoActiveMeeting,
    SubmitError,
)
from feedback_portal.features.feedback_window.domain.models import (
    Answer,
    CountdownStep,
    MeetingRef,
    Question,
    SessionSnapshot,
    SubmissionRecord,
    WindowPhase,
)
from feedback_portal.main import app

MEETING = MeetingRef(id=7, title="Planning", start=datetime(2024, 5, 1, 10, 0, tzinfo=UTC))
PAYLOAD = {"answers": [{"question_id": 1, "rating": 4}, {"question_id": 2, "rating": 5, "notes": "ok"}]}


def _snapshot(**overrides) -> SessionSnapshot:
    values = {
        "tracked_meeting": MEETING,
        "phase": WindowPhase.ACTIVE,
        "minutes_until_start": 3,
        "questions_visible": True,
        "questions": [Question(id=1, text="Clear agenda?", meeting_id=7)],
        "responded": [3],
    }
    values.update(overrides)
    return SessionSnapshot(**values)


@pytest.fixture
def fake_session():
    session = MagicMock()
    session.submit_in_flight = False
    session.snapshot.return_value = _snapshot()
    session.open_view = AsyncMock(return_value=_snapshot())
    session.close_view.return_value = _snapshot(questions_visible=False, questions=[])
    session.submit = AsyncMock()
    return session


@pytest.fixture
def client(fake_session):
    app.dependency_overrides[get_feedback_session] = lambda: fake_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_status_reports_tracked_meeting(client):
    response = client.get("/feedback/status")

    assert response.status_code == 200
    data = response.json()
    assert data["meeting"]["id"] == 7
    assert data["phase"] == "Active"
    assert data["questions_visible"] is True
    assert data["questions"] == [{"id": 1, "text": "Clear agenda?"}]
    assert data["responded_meeting_ids"] == [3]


def test_status_includes_countdown(client, fake_session):
    fake_session.snapshot.return_value = _snapshot(
        countdown=CountdownStep(value=2, progress=50), countdown_context="reveal"
    )

    data = client.get("/feedback/status").json()

    assert data["countdown"] == {"value": 2, "progress": 50, "context": "reveal"}


def test_status_without_session_is_unavailable():
    app.dependency_overrides.clear()
    app.state.session = None

    response = TestClient(app).get("/feedback/status")

    assert response.status_code == 503


def test_view_toggle(client, fake_session):
    opened = client.post("/feedback/view", json={"open": True})
    closed = client.post("/feedback/view", json={"open": False})

    assert opened.status_code == 200
    fake_session.open_view.assert_awaited_once()
    assert closed.json()["questions_visible"] is False
    fake_session.close_view.assert_called_once()


def test_submit_success(client, fake_session):
    now = datetime(2024, 5, 1, 9, 56, tzinfo=UTC)
    fake_session.submit.return_value = [
        SubmissionRecord(meeting_id=7, question_id=1, rating=4, notes="", submitted_at=now),
        SubmissionRecord(meeting_id=7, question_id=2, rating=5, notes="ok", submitted_at=now),
    ]

    response = client.post("/feedback/submit", json=PAYLOAD)

    assert response.status_code == 200
    data = response.json()
    assert data["submitted"] is True
    assert data["meeting_id"] == 7
    assert [r["question_id"] for r in data["records"]] == [1, 2]
    answers = fake_session.submit.await_args.args[0]
    assert answers == [Answer(question_id=1, rating=4), Answer(question_id=2, rating=5, notes="ok")]


def test_submit_cancelled_countdown(client, fake_session):
    fake_session.submit.return_value = None

    data = client.post("/feedback/submit", json=PAYLOAD).json()

    assert data["submitted"] is False


def test_submit_incomplete_is_422(client, fake_session):
    fake_session.submit.side_effect = IncompleteAnswers(
        "Please rate all questions before submitting", unrated_question_ids=[2], meeting_id=7
    )

    response = client.post("/feedback/submit", json=PAYLOAD)

    assert response.status_code == 422
    assert response.json()["detail"]["unrated_question_ids"] == [2]


def test_submit_partial_failure_is_502(client, fake_session):
    fake_session.submit.side_effect = SubmitError(
        "Failed to submit 1 of 2 answers", meeting_id=7, succeeded=[1], failed={2: "busy"}
    )

    response = client.post("/feedback/submit", json=PAYLOAD)

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["succeeded_question_ids"] == [1]
    assert detail["failed_question_ids"] == [2]
    assert detail["retryable"] is True


def test_submit_without_active_meeting_is_409(client, fake_session):
    fake_session.submit.side_effect = NoActiveMeeting("No meeting is open for feedback")

    assert client.post("/feedback/submit", json=PAYLOAD).status_code == 409


def test_submit_for_answered_meeting_is_409(client, fake_session):
    fake_session.submit.side_effect = AlreadySubmitted(
        "Feedback already submitted for this meeting", meeting_id=7
    )

    response = client.post("/feedback/submit", json=PAYLOAD)

    assert response.status_code == 409
    assert response.json()["detail"] == "Feedback already submitted for this meeting"


def test_submit_while_in_flight_is_409(client, fake_session):
    fake_session.submit_in_flight = True

    assert client.post("/feedback/submit", json=PAYLOAD).status_code == 409
    fake_session.submit.assert_not_awaited()


def test_rating_out_of_range_is_rejected(client):
    payload = {"answers": [{"question_id": 1, "rating": 9}]}

    assert client.post("/feedback/submit", json=payload).status_code == 422
