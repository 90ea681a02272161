from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from app.repositories.profile_repository import ProfileRepository, ProfileRepositoryError

ROW = {
    "id": "customer-9",
    "email": "customer@example.com",
    "full_name": "Casey Customer",
    "is_pro": True,
    "role": "user",
    "created_at": datetime(2024, 5, 1, tzinfo=UTC),
    "updated_at": datetime(2024, 6, 1, tzinfo=UTC),
}


@pytest.mark.asyncio
async def test_delete_cascade_removes_owned_rows_before_the_profile(monkeypatch):
    transaction = AsyncMock(return_value=[4, 1, 2, 6, 3, 2, 1])
    monkeypatch.setattr("app.repositories.profile_repository.execute_transaction", transaction)

    deleted = await ProfileRepository.delete_cascade("customer-9")

    assert deleted is True
    statements = transaction.call_args.args[0]
    assert [sql for sql, _ in statements] == [
        "DELETE FROM chat_messages WHERE user_id = %s",
        "DELETE FROM dispute_letters WHERE user_id = %s",
        "DELETE FROM user_notes WHERE user_id = %s",
        "DELETE FROM notifications WHERE user_id = %s",
        "DELETE FROM credit_scores WHERE user_id = %s",
        "DELETE FROM analyses WHERE user_id = %s",
        "DELETE FROM profiles WHERE id = %s",
    ]
    assert all(params == ("customer-9",) for _, params in statements)


@pytest.mark.asyncio
async def test_delete_cascade_of_unknown_user(monkeypatch):
    monkeypatch.setattr(
        "app.repositories.profile_repository.execute_transaction",
        AsyncMock(return_value=[0, 0, 0, 0, 0, 0, 0]),
    )

    assert await ProfileRepository.delete_cascade("missing") is False


@pytest.mark.asyncio
async def test_update_user_sets_only_editable_fields(monkeypatch):
    fetch_one = AsyncMock(return_value=ROW)
    monkeypatch.setattr("app.repositories.profile_repository.fetch_one", fetch_one)

    profile = await ProfileRepository.update_user(
        "customer-9", {"is_pro": True, "email": "hijack@example.com"}
    )

    assert profile.is_pro is True
    query, params = fetch_one.call_args.args
    assert "is_pro = %s" in query
    assert "email = %s" not in query
    assert params == (True, "customer-9")


@pytest.mark.asyncio
async def test_update_user_without_editable_fields_raises(monkeypatch):
    fetch_one = AsyncMock()
    monkeypatch.setattr("app.repositories.profile_repository.fetch_one", fetch_one)

    with pytest.raises(ProfileRepositoryError):
        await ProfileRepository.update_user("customer-9", {"email": "x@example.com"})

    fetch_one.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_of_unknown_user_returns_none(monkeypatch):
    monkeypatch.setattr(
        "app.repositories.profile_repository.fetch_one", AsyncMock(return_value=None)
    )

    assert await ProfileRepository.update_user("missing", {"role": "admin"}) is None


@pytest.mark.asyncio
async def test_list_users_maps_rows(monkeypatch):
    fetch_all = AsyncMock(return_value=[ROW])
    monkeypatch.setattr("app.repositories.profile_repository.fetch_all", fetch_all)

    users = await ProfileRepository.list_users(limit=10, offset=20)

    assert users[0].full_name == "Casey Customer"
    assert fetch_all.call_args.args[1] == (10, 20)
