from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_notification_service
from app.models.domain.account_domain import Notification
from app.routes import notifications
from app.services.notification_service import NotificationService
from tests.fakes import USER_ID


@pytest.fixture
def repository():
    repo = MagicMock()
    repo.list_for_user = AsyncMock(
        return_value=[
            Notification(
                id="n-1",
                user_id=USER_ID,
                title="Analysis complete",
                message="Your credit report analysis is ready to view.",
                type="success",
                is_read=False,
                created_at=datetime(2024, 5, 20, tzinfo=UTC),
            )
        ]
    )
    repo.unread_count = AsyncMock(return_value=1)
    repo.mark_read = AsyncMock(return_value=True)
    repo.mark_all_read = AsyncMock(return_value=4)
    return repo


@pytest.fixture
def client(build_app, repository):
    app = build_app(notifications.router)
    app.dependency_overrides[get_notification_service] = lambda: NotificationService(repository)
    return TestClient(app)


def test_list_notifications_with_unread_count(client, repository):
    response = client.get("/notifications", params={"limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["unreadCount"] == 1
    assert body["notifications"][0]["title"] == "Analysis complete"
    assert body["notifications"][0]["isRead"] is False
    repository.list_for_user.assert_awaited_once_with(USER_ID, limit=5)


def test_unread_count(client):
    assert client.get("/notifications/unread-count").json() == {"count": 1}


def test_mark_all_read(client):
    response = client.post("/notifications/read-all")

    assert response.json() == {"success": True, "message": "4 notifications marked as read"}


def test_mark_read_is_scoped_to_the_caller(client, repository):
    response = client.post("/notifications/n-1/read")

    assert response.status_code == 200
    repository.mark_read.assert_awaited_once_with("n-1", USER_ID)


def test_mark_read_of_unknown_notification(client, repository):
    repository.mark_read.return_value = False

    response = client.post("/notifications/n-404/read")

    assert response.status_code == 404
