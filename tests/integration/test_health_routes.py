from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from app.dependencies import get_diagnostics_service
from app.main import app as main_app
from app.middleware import RequestContextMiddleware
from app.middleware.request_context import resolve_request_id
from app.routes import health


@pytest.fixture
def diagnostics():
    service = MagicMock()
    service.readiness = AsyncMock(
        return_value={"overall_ok": False, "checks": {"database": {"ok": False}}}
    )
    service.health_report = AsyncMock(
        return_value={"status": "degraded", "services": {"openai": {"status": "error"}}}
    )
    return service


@pytest.fixture
def client(build_app, diagnostics):
    app = build_app(health.router)
    app.dependency_overrides[get_diagnostics_service] = lambda: diagnostics
    return TestClient(app)


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "credit-analysis-api"}


def test_readyz_reports_failures_with_200(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    assert response.json()["overall_ok"] is False


def test_health_returns_dependency_report(client, diagnostics):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    diagnostics.health_report.assert_awaited_once()


def test_every_response_carries_a_request_id():
    response = TestClient(main_app).get("/healthz")

    assert response.status_code == 200
    assert len(response.headers["X-Request-ID"]) == 36


def test_unhandled_errors_return_json_with_request_id(build_app):
    router = APIRouter()

    @router.get("/boom")
    async def boom():
        raise RuntimeError("unexpected")

    app = build_app(router)
    app.add_middleware(RequestContextMiddleware)

    response = TestClient(app, raise_server_exceptions=False).get("/boom")

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Internal server error"
    assert "request_id" in body


def test_well_formed_caller_request_id_is_kept():
    response = TestClient(main_app).get("/healthz", headers={"X-Request-ID": "trace-abc-12345"})

    assert response.headers["X-Request-ID"] == "trace-abc-12345"


@pytest.mark.parametrize("incoming", ["short", "has spaces in it", "x" * 65])
def test_malformed_caller_request_id_is_replaced(incoming):
    assert resolve_request_id(incoming) != incoming
    assert len(resolve_request_id(incoming)) == 36
