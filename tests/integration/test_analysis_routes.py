import json

import openai
import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.dependencies import get_pipeline
from app.routes import analysis as analysis_routes
from app.services.analysis_pipeline import AnalysisPipeline
from app.services.openai_service import LLMConfigurationError
from app.services.text_extraction_service import TextExtractor
from tests.fakes import VALID_ANALYSIS, make_completion, openai_status_error


@pytest.fixture
def pipeline(llm_client, call_log, analyses, scores, notifier):
    return AnalysisPipeline(
        llm_client,
        extractor=TextExtractor(log_repository=call_log),
        analyses=analyses,
        scores=scores,
        notifier=notifier,
    )


@pytest.fixture
def client(build_app, pipeline, analyses, monkeypatch):
    app = build_app(analysis_routes.router)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    monkeypatch.setattr(analysis_routes, "AnalysisRepository", analyses)
    return TestClient(app)


@pytest.fixture
def valid_model_output(fake_openai):
    fake_openai.chat.completions.create.return_value = make_completion(json.dumps(VALID_ANALYSIS))


def test_analyze_json_text(client, analyses, valid_model_output):
    response = client.post("/analyze", json={"text": "EXPERIAN CREDIT REPORT"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["persisted"] is True
    assert body["result"]["overview"]["score"] == 712
    assert body["result"]["creditHacks"]["recommendations"][0]["impact"] == "high"
    assert analyses.rows[body["analysisId"]].status == "completed"


def test_analyze_multipart_upload(client, analyses, valid_model_output):
    response = client.post(
        "/analyze",
        files={"file": ("report.txt", b"TransUnion report body", "text/plain")},
    )

    assert response.status_code == 200
    analysis_id = response.json()["analysisId"]
    assert analyses.rows[analysis_id].file_name == "report.txt"
    assert analyses.rows[analysis_id].ocr_text == "TransUnion report body"


def test_analyze_retry_from_stored_text(client, analyses, valid_model_output):
    previous = analyses.add(status="error", ocr_text="stored report")

    response = client.post("/analyze", json={"analysisId": previous.id})

    assert response.status_code == 200
    assert response.json()["analysisId"] == previous.id
    assert analyses.rows[previous.id].status == "completed"


def test_analyze_retry_of_unknown_analysis(client):
    response = client.post("/analyze", json={"analysisId": "does-not-exist"})

    assert response.status_code == 404
    assert response.json()["error_code"] == "not_found"


def test_analyze_without_input(client):
    response = client.post("/analyze", json={})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "No text or file provided for analysis",
        "error_code": "missing_input",
    }


def test_analyze_with_malformed_json(client):
    response = client.post(
        "/analyze", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "invalid_json"


def test_analyze_rejects_oversized_upload(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 16)

    response = client.post(
        "/analyze", files={"file": ("report.txt", b"x" * 64, "text/plain")}
    )

    assert response.status_code == 413
    assert response.json()["error_code"] == "file_too_large"


def test_analyze_rejects_unsupported_file_type(client):
    response = client.post(
        "/analyze", files={"file": ("report.zip", b"PK\x03\x04archive", "application/zip")}
    )

    assert response.status_code == 415
    assert response.json()["error_code"] == "unsupported_media_type"


def test_analyze_failure_reports_error_kind(client, analyses, fake_openai):
    fake_openai.chat.completions.create.side_effect = openai_status_error(
        openai.AuthenticationError, 401
    )

    response = client.post("/analyze", json={"text": "report"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "analysis_failed"
    assert body["errorKind"] == "AUTHENTICATION"
    assert analyses.rows[body["analysisId"]].status == "error"


def test_analyze_without_openai_key(build_app, monkeypatch):
    def unconfigured():
        raise LLMConfigurationError("OPENAI_API_KEY is not configured")

    monkeypatch.setattr("app.dependencies.get_credit_analysis_client", unconfigured)
    app = build_app(analysis_routes.router)

    response = TestClient(app).post("/analyze", json={"text": "report"})

    assert response.status_code == 503
    assert response.json()["error_code"] == "llm_not_configured"


def test_get_processing_analysis_returns_202(client, analyses):
    analysis = analyses.add(status="processing")

    response = client.get(f"/analysis/{analysis.id}")

    assert response.status_code == 202
    assert response.json() == {"id": analysis.id, "status": "processing"}


def test_get_errored_analysis(client, analyses):
    analysis = analyses.add(status="error", error_message="OpenAI authentication failed")

    response = client.get(f"/analysis/{analysis.id}")

    assert response.status_code == 200
    assert response.json()["errorMessage"] == "OpenAI authentication failed"


def test_get_completed_analysis_is_normalized(client, analyses):
    analysis = analyses.add(status="completed", result={"overview": {"score": "701"}})

    response = client.get(f"/analysis/{analysis.id}")

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["overview"]["score"] == 701
    assert result["disputes"] == {"items": []}


def test_get_foreign_analysis_is_not_found(client, analyses):
    foreign = analyses.add(user_id="someone-else")

    response = client.get(f"/analysis/{foreign.id}")

    assert response.status_code == 404


def test_list_analyses(client, analyses):
    analyses.add(status="completed", file_name="jan.pdf", result=VALID_ANALYSIS)
    analyses.add(user_id="someone-else")

    response = client.get("/analyses")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["analyses"][0]["fileName"] == "jan.pdf"
    assert body["analyses"][0]["score"] == 712


def test_unauthenticated_request_is_rejected(build_app):
    app = build_app(analysis_routes.router, authenticated=False)

    response = TestClient(app).get("/analyses")

    assert response.status_code == 401
    assert response.json()["error_code"] == "unauthorized"
