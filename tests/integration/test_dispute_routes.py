from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_letter_service
from app.models.domain.account_domain import DisputeLetter, UserNote
from app.routes import disputes
from app.services.dispute_letter_service import DisputeLetterService
from tests.fakes import USER_ID, VALID_ANALYSIS, make_completion, openai_status_error

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=UTC)

DISPUTE = {
    "bureau": "Experian",
    "accountName": "ACME COLLECTIONS",
    "accountNumber": "XXXX1234",
    "issueType": "Not my account",
    "recommendedAction": "Request validation",
}


@pytest.fixture
def letters():
    repository = MagicMock()
    repository.create = AsyncMock(
        return_value=DisputeLetter(
            id="letter-1",
            user_id=USER_ID,
            analysis_id="analysis-1",
            bureau="Experian",
            account_name="ACME COLLECTIONS",
            content="Dear Experian,",
            created_at=NOW,
        )
    )
    return repository


@pytest.fixture
def notes():
    repository = MagicMock()
    repository.create = AsyncMock(
        return_value=UserNote(
            id="note-1",
            user_id=USER_ID,
            analysis_id="analysis-1",
            content="Called Experian",
            created_at=NOW,
        )
    )
    repository.list_for_analysis = AsyncMock(return_value=[])
    repository.delete = AsyncMock(return_value=True)
    return repository


@pytest.fixture
def client(build_app, llm_client, analyses, letters, notes, monkeypatch):
    monkeypatch.setattr(disputes, "AnalysisRepository", analyses)
    monkeypatch.setattr(disputes, "NoteRepository", notes)
    app = build_app(disputes.router)
    app.dependency_overrides[get_letter_service] = lambda: DisputeLetterService(
        llm_client, analyses=analyses, letters=letters
    )
    return TestClient(app)


@pytest.fixture
def analysis(analyses):
    return analyses.add(id="analysis-1", status="completed", result=VALID_ANALYSIS)


def test_generate_letter(client, analysis, fake_openai, letters):
    fake_openai.chat.completions.create.return_value = make_completion("Dear Experian,")

    response = client.post(
        "/generate-letter",
        json={
            "analysisId": analysis.id,
            "dispute": DISPUTE,
            "userInfo": {"name": "Jordan Lee", "address": "1 Main St"},
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "letter": "Dear Experian,",
        "letterId": "letter-1",
        "stored": True,
    }

    prompt = fake_openai.chat.completions.create.call_args.kwargs["messages"][-1]["content"]
    assert "ACME COLLECTIONS" in prompt
    assert "Jordan Lee" in prompt
    letters.create.assert_awaited_once()


def test_letter_is_returned_even_if_storing_fails(client, analysis, fake_openai, letters):
    fake_openai.chat.completions.create.return_value = make_completion("Dear Experian,")
    letters.create.side_effect = RuntimeError("dispute_letters unavailable")

    response = client.post("/generate-letter", json={"analysisId": analysis.id, "dispute": DISPUTE})

    assert response.status_code == 200
    assert response.json()["stored"] is False
    assert response.json()["letterId"] is None


def test_letter_generation_failure(client, analysis, fake_openai):
    fake_openai.chat.completions.create.side_effect = openai_status_error(
        openai.AuthenticationError, 401
    )

    response = client.post("/generate-letter", json={"analysisId": analysis.id, "dispute": DISPUTE})

    assert response.status_code == 503
    assert response.json()["error_code"] == "letter_generation_failed"


def test_letter_for_unknown_analysis(client):
    response = client.post("/generate-letter", json={"analysisId": "missing", "dispute": DISPUTE})

    assert response.status_code == 404


def test_create_note(client, analysis, notes):
    response = client.post("/notes", json={"analysisId": analysis.id, "content": "Called Experian"})

    assert response.status_code == 201
    assert response.json()["id"] == "note-1"
    notes.create.assert_awaited_once_with(USER_ID, analysis.id, "Called Experian")


def test_note_on_foreign_analysis_is_not_found(client, analyses, notes):
    foreign = analyses.add(user_id="someone-else")

    response = client.post("/notes", json={"analysisId": foreign.id, "content": "hi"})

    assert response.status_code == 404
    notes.create.assert_not_awaited()


def test_delete_missing_note(client, notes):
    notes.delete.return_value = False

    response = client.delete("/notes/note-404")

    assert response.status_code == 404
    notes.delete.assert_awaited_once_with("note-404", USER_ID)


def test_list_notes_requires_analysis_id(client):
    response = client.get("/notes")

    assert response.status_code == 422
