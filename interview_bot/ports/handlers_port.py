"""Handlers port — the operations the command layer triggers in the core.

Injected into the bot at construction time.
"""

from __future__ import annotations

from typing import Protocol

from interview_bot.data.models import QuestionCandidate


class Handlers(Protocol):
    """Named entry points from the command layer into the core."""

    async def on_new_question(
        self, chat_id: int, category: str | None = None
    ) -> QuestionCandidate: ...

    async def on_reset(self, chat_id: int, all_users: bool = False) -> int: ...

    async def on_schedule(self, chat_id: int, expr: str) -> None: ...

    async def on_set_active(self, chat_id: int, active: bool) -> bool: ...
