from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.domain.account_domain import Notification
from app.services.notification_service import NotificationService
from tests.fakes import USER_ID


@pytest.fixture
def repository():
    repo = MagicMock()
    repo.create = AsyncMock()
    repo.mark_all_read = AsyncMock(return_value=3)
    return repo


@pytest.mark.asyncio
async def test_create_notification_returns_true_when_stored(repository):
    repository.create.return_value = Notification(
        id="n-1",
        user_id=USER_ID,
        title="Analysis complete",
        message="Ready",
        type="success",
        is_read=False,
        created_at=datetime.now(UTC),
    )

    created = await NotificationService(repository).create_notification(
        USER_ID, "Analysis complete", "Ready", "success"
    )

    assert created is True
    repository.create.assert_awaited_once_with(USER_ID, "Analysis complete", "Ready", "success")


@pytest.mark.asyncio
async def test_create_notification_never_raises(repository):
    repository.create.side_effect = RuntimeError("relation notifications does not exist")

    created = await NotificationService(repository).create_notification(USER_ID, "t", "m")

    assert created is False


@pytest.mark.asyncio
async def test_mark_all_read_returns_count(repository):
    assert await NotificationService(repository).mark_all_read(USER_ID) == 3
