"""
Interview Question Bot — Question Service.

The end-to-end pipeline behind both /question and a trigger firing:

    access policy → uniqueness filter + generator → delivery → history

A question is written to history only after every part of it was delivered,
so a failed send never makes the bot think the question was already asked.
"""

from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from interview_bot.core.access_policy import AccessPolicy, DenialReason, PolicyDenied
from interview_bot.core.delivery import DeliveryPipeline
from interview_bot.core.uniqueness import UniquenessFilter
from interview_bot.data.models import BotSettings, QuestionCandidate, User
from interview_bot.ports.generator_port import NoApiKeyAvailable
from interview_bot.ports.message_port import MessageSender, MessageSendError
from interview_bot.ports.repository_port import Repository, StorageError

logger = logging.getLogger(__name__)

DELIVERY_FAILED_NOTICE = "❌ Sorry, there was an error sending the question. Please try again later."


class DeliveryFailure(Exception):
    """The question or part of its answer could not be delivered."""


class QuestionService:
    """Produces, delivers and records one question for one user."""

    def __init__(
        self,
        repo: Repository,
        policy: AccessPolicy,
        uniqueness: UniquenessFilter,
        delivery: DeliveryPipeline,
        sender: MessageSender,
        timezone: str = "UTC",
    ) -> None:
        self._repo = repo
        self._policy = policy
        self._uniqueness = uniqueness
        self._delivery = delivery
        self._sender = sender
        self._tz = ZoneInfo(timezone)

    async def _check_daily_limit(self, user: User, settings: BotSettings) -> None:
        limit = settings.max_questions_per_day
        if user.is_admin or limit <= 0:
            return
        start_of_day = datetime.now(self._tz).replace(hour=0, minute=0, second=0, microsecond=0)
        sent_today = await self._repo.count_questions_since(user.id, start_of_day)
        if sent_today >= limit:
            raise PolicyDenied(
                DenialReason.DAILY_LIMIT,
                f"You have reached today's limit of {limit} questions. Try again tomorrow.",
            )

    async def send_question(
        self,
        chat_id: int,
        category: str | None = None,
        *,
        scheduled: bool = False,
    ) -> QuestionCandidate:
        """Run the full pipeline for one chat.

        Scheduled runs are not counted against the daily on-demand cap.

        Raises:
            PolicyDenied: a gate is closed (including a missing API key).
            DeliveryFailure: the transport did not take the whole payload.
            StorageError: the repository failed.
        """
        user = await self._repo.get_user(chat_id)
        if user is None:
            raise PolicyDenied(DenialReason.NOT_REGISTERED, "Please start the bot first with /start")
        if not user.is_active:
            raise PolicyDenied(DenialReason.INACTIVE, "Your account is inactive.")

        settings = await self._policy.current_settings()
        api_key = await self._policy.authorize(user, settings)
        if not scheduled:
            await self._check_daily_limit(user, settings)

        try:
            candidate = await self._uniqueness.obtain(user, category, api_key=api_key)
        except NoApiKeyAvailable as exc:
            raise PolicyDenied(DenialReason.API_KEY_REQUIRED, str(exc)) from exc

        delivered = await self._delivery.deliver(
            chat_id, candidate.question, candidate.answer, candidate.category,
        )
        if not delivered:
            raise DeliveryFailure(f"Delivery to chat {chat_id} failed")

        await self._repo.save_question(
            user.id, candidate.question, candidate.answer, candidate.category,
        )
        await self._repo.update_last_sent(chat_id)
        logger.info("Question sent and saved for chat %d: %s", chat_id, candidate.question[:50])
        return candidate

    async def send_scheduled(self, chat_id: int) -> bool:
        """Trigger entry point: never raises, reports whether a question went out."""
        try:
            await self.send_question(chat_id, scheduled=True)
            return True
        except PolicyDenied as exc:
            logger.warning("Scheduled question for chat %d skipped: %s", chat_id, exc.reason.value)
        except DeliveryFailure as exc:
            logger.error("Scheduled question not delivered: %s", exc)
            await self._notify(chat_id, DELIVERY_FAILED_NOTICE)
        except StorageError as exc:
            logger.error("Scheduled question for chat %d hit a storage error: %s", chat_id, exc)
        return False

    async def _notify(self, chat_id: int, text: str) -> None:
        try:
            await self._sender.send(chat_id, text, formatted=False)
        except MessageSendError as exc:
            logger.error("Could not notify chat %d: %s", chat_id, exc)
