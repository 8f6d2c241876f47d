"""Repository port — abstract interface for users, settings and history.

Core modules depend on this protocol, never on a specific storage engine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from interview_bot.data.models import BotSettings, QuestionRecord, User


class StorageError(Exception):
    """Raised when any repository operation fails."""


class Repository(Protocol):
    """Abstract storage interface used by core modules."""

    async def get_user(self, chat_id: int) -> User | None: ...

    async def create_user(
        self, chat_id: int, name: str, username: str | None = None
    ) -> int: ...

    async def ensure_user(
        self,
        chat_id: int,
        name: str,
        username: str | None = None,
        is_admin: bool = False,
        is_approved: bool = False,
    ) -> tuple[User, bool]: ...

    async def update_schedule(self, chat_id: int, expr: str) -> None: ...

    async def update_last_sent(self, chat_id: int) -> None: ...

    async def list_users(self, active_only: bool = True) -> list[User]: ...

    async def list_pending_users(self) -> list[User]: ...

    async def list_admins(self) -> list[User]: ...

    async def is_admin(self, chat_id: int) -> bool: ...

    async def approve_user(self, chat_id: int) -> bool: ...

    async def set_active(self, chat_id: int, active: bool) -> bool: ...

    async def get_setting(self, key: str, default: object = None) -> object: ...

    async def update_setting(self, key: str, value: object) -> None: ...

    async def get_settings(self) -> BotSettings: ...

    async def recent_questions(
        self, user_id: int, limit: int = 20
    ) -> list[QuestionRecord]: ...

    async def is_question_unique(self, user_id: int, question: str) -> bool: ...

    async def count_questions_since(self, user_id: int, since: datetime) -> int: ...

    async def save_question(
        self, user_id: int, question: str, answer: str, category: str
    ) -> int: ...

    async def question_stats(
        self, user_id: int | None = None
    ) -> tuple[int, dict[str, int]]: ...

    async def delete_questions(self, user_id: int | None = None) -> int: ...

    async def set_api_key(self, chat_id: int, key: str | None) -> None: ...

    async def get_api_key(self, chat_id: int) -> str | None: ...
