"""
Domain records for the per-user data that hangs off an analysis:
chat history, notifications, dispute letters, notes and the profile flags.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

ChatRole = Literal["user", "assistant", "system"]
NotificationType = Literal["info", "success", "warning", "error"]


@dataclass(slots=True)
class ChatMessage:
    id: str
    analysis_id: str
    user_id: str
    role: ChatRole
    content: str
    created_at: datetime


@dataclass(slots=True)
class Notification:
    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    is_read: bool
    created_at: datetime


@dataclass(slots=True)
class DisputeLetter:
    id: str
    user_id: str
    analysis_id: str
    bureau: str
    account_name: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class UserNote:
    id: str
    user_id: str
    analysis_id: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class Profile:
    """Entitlement-relevant columns of a profiles row."""

    id: str
    is_pro: bool
    role: str | None

    @property
    def has_pro_access(self) -> bool:
        return self.is_pro or self.role == "admin"


@dataclass(slots=True)
class UserProfile:
    """A profiles row as the admin user list shows it."""

    id: str
    email: str | None
    full_name: str | None
    is_pro: bool
    role: str | None
    created_at: datetime
    updated_at: datetime | None = None
