"""
Persistence for profiles: the entitlement flags read on every Pro request,
plus the admin user list, edits and account deletion.
"""

from app.db.helpers import (
    DatabaseError,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import Profile, UserProfile

logger = get_logger(__name__)

# Columns an admin may change; anything else in an update is ignored
EDITABLE_FIELDS = ("full_name", "is_pro", "role")


class ProfileRepositoryError(DatabaseError):
    """More specific exception for profile persistence failures."""


class ProfileRepository:
    SELECT_COLUMNS = "id, email, full_name, is_pro, role, created_at, updated_at"

    # Rows owned by the user, deleted before the profile itself
    CASCADE_TABLES = (
        "chat_messages",
        "dispute_letters",
        "user_notes",
        "notifications",
        "credit_scores",
        "analyses",
    )

    @classmethod
    def _row_to_user(cls, row: dict) -> UserProfile:
        return UserProfile(
            id=str(row["id"]),
            email=row.get("email"),
            full_name=row.get("full_name"),
            is_pro=bool(row.get("is_pro")),
            role=row.get("role"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )

    @classmethod
    @with_db_retry()
    async def get(cls, user_id: str) -> Profile | None:
        row = await fetch_one("SELECT id, is_pro, role FROM profiles WHERE id = %s", (user_id,))
        if not row:
            return None
        return Profile(id=str(row["id"]), is_pro=bool(row.get("is_pro")), role=row.get("role"))

    @classmethod
    async def set_pro(cls, user_id: str) -> bool:
        query = "UPDATE profiles SET is_pro = true, updated_at = NOW() WHERE id = %s"
        updated = await execute_query(query, (user_id,)) > 0
        logger.info("Pro entitlement granted", user_id=user_id, updated=updated)
        return updated

    @classmethod
    async def count_users(cls) -> int:
        return await fetch_val("SELECT COUNT(*) FROM profiles") or 0

    @classmethod
    async def count_pro_users(cls) -> int:
        return await fetch_val("SELECT COUNT(*) FROM profiles WHERE is_pro = true") or 0

    @classmethod
    async def list_users(cls, limit: int = 50, offset: int = 0) -> list[UserProfile]:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM profiles
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
        """
        rows = await fetch_all(query, (limit, offset))
        return [cls._row_to_user(row) for row in rows]

    @classmethod
    async def update_user(cls, user_id: str, changes: dict) -> UserProfile | None:
        """
        Apply admin edits to full_name, is_pro and role.

        Returns:
            The updated profile, or None if no such user exists
        """
        fields = [name for name in EDITABLE_FIELDS if name in changes]
        if not fields:
            raise ProfileRepositoryError(
                "No editable fields supplied", operation="update_user", recoverable=False
            )

        assignments = ", ".join(f"{name} = %s" for name in fields)
        query = f"""
            UPDATE profiles
            SET {assignments}, updated_at = NOW()
            WHERE id = %s
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (*(changes[name] for name in fields), user_id))
        if not row:
            return None

        logger.info("Profile updated by admin", user_id=user_id, fields=fields)
        return cls._row_to_user(row)

    @classmethod
    async def delete_cascade(cls, user_id: str) -> bool:
        """Delete a user's data and profile in one transaction."""
        statements = [
            (f"DELETE FROM {table} WHERE user_id = %s", (user_id,)) for table in cls.CASCADE_TABLES
        ]
        statements.append(("DELETE FROM profiles WHERE id = %s", (user_id,)))

        row_counts = await execute_transaction(statements)
        deleted = row_counts[-1] > 0

        logger.info(
            "User cascade delete finished",
            user_id=user_id,
            deleted=deleted,
            dependent_rows=sum(row_counts[:-1]),
        )
        return deleted
