"""
Interview Question Bot — Core Handlers.

Implements the Handlers port: the named operations the command layer calls
into. Keeping them behind one object lets the bot be built with any core
(or a test double) instead of a bag of callbacks.
"""

from __future__ import annotations

import logging

from interview_bot.core.access_policy import DenialReason, PolicyDenied
from interview_bot.core.question_service import QuestionService
from interview_bot.core.scheduler import SchedulerRegistry
from interview_bot.data.models import QuestionCandidate
from interview_bot.ports.repository_port import Repository

logger = logging.getLogger(__name__)


class QuestionBotHandlers:
    """Handlers backed by the question service, the registry and the repository."""

    def __init__(
        self,
        service: QuestionService,
        registry: SchedulerRegistry,
        repo: Repository,
    ) -> None:
        self._service = service
        self._registry = registry
        self._repo = repo

    async def on_new_question(
        self, chat_id: int, category: str | None = None,
    ) -> QuestionCandidate:
        return await self._service.send_question(chat_id, category)

    async def on_reset(self, chat_id: int, all_users: bool = False) -> int:
        """Delete the caller's history, or everyone's when an admin asks."""
        if all_users:
            if not await self._repo.is_admin(chat_id):
                raise PolicyDenied(DenialReason.NOT_ADMIN, "Only admins can reset all history.")
            return await self._repo.delete_questions(None)

        user = await self._repo.get_user(chat_id)
        if user is None:
            return 0
        return await self._repo.delete_questions(user.id)

    async def on_schedule(self, chat_id: int, expr: str) -> None:
        """Persist a new schedule and re-register the chat's trigger.

        The expression is validated before anything is written, so a bad
        one leaves both the stored schedule and the live trigger as they were.
        """
        self._registry.validate(expr)
        user = await self._repo.get_user(chat_id)
        if user is None:
            raise PolicyDenied(DenialReason.NOT_REGISTERED, "Please start the bot first with /start")

        await self._repo.update_schedule(chat_id, expr)
        if user.is_active:
            await self._registry.register(chat_id, expr)

    async def on_set_active(self, chat_id: int, active: bool) -> bool:
        """Soft-(de)activate a user and add or drop their trigger to match."""
        changed = await self._repo.set_active(chat_id, active)
        if not changed:
            return False
        if active:
            user = await self._repo.get_user(chat_id)
            if user is not None:
                await self._registry.register(chat_id, user.schedule_expr)
        else:
            await self._registry.cancel(chat_id)
        return True
