"""
Interview Question Bot — Uniqueness Filter.

Keeps asking the generator until it produces a question this user has not
seen before, or the attempt budget runs out. Exhaustion is not an error:
the last candidate is returned and may repeat an old question.
"""

from __future__ import annotations

import logging
import random

from interview_bot.core.question_generator import CATEGORIES, fallback_candidate
from interview_bot.data.models import QuestionCandidate, User
from interview_bot.ports.generator_port import GenerationError, NoApiKeyAvailable, QuestionGenerator
from interview_bot.ports.repository_port import Repository

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
HISTORY_LIMIT = 20
DIGEST_LENGTH = 150


def topic_digest(question: str) -> str:
    """Lossy summary of a past question, used only as an 'avoid' hint."""
    question = question.strip()
    if len(question) > DIGEST_LENGTH:
        return question[:DIGEST_LENGTH].strip() + "..."
    return question


class UniquenessFilter:
    """Generates candidates against a user's history until one is new."""

    def __init__(
        self,
        repo: Repository,
        generator: QuestionGenerator,
        language: str = "en",
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self._repo = repo
        self._generator = generator
        self._language = language
        self._max_attempts = max_attempts

    async def obtain(
        self,
        user: User,
        category_hint: str | None = None,
        api_key: str | None = None,
    ) -> QuestionCandidate:
        """Return a candidate for this user.

        Generation failures other than a missing key are absorbed by
        returning the built-in fallback pair. NoApiKeyAvailable propagates
        so the user can be told to configure a key.
        """
        category = category_hint or random.choice(CATEGORIES)
        candidate: QuestionCandidate | None = None

        for attempt in range(1, self._max_attempts + 1):
            history = await self._repo.recent_questions(user.id, HISTORY_LIMIT)
            hints = [topic_digest(record.question) for record in history]

            try:
                candidate = await self._generator.generate(
                    category, hints, self._language, api_key=api_key,
                )
            except NoApiKeyAvailable:
                raise
            except GenerationError as exc:
                logger.warning(
                    "Generation failed for user %d (%s), using fallback question",
                    user.chat_id, exc,
                )
                return fallback_candidate(self._language, category)

            if await self._repo.is_question_unique(user.id, candidate.question):
                return candidate

            logger.info(
                "Duplicate question for user %d on attempt %d/%d",
                user.chat_id, attempt, self._max_attempts,
            )

        logger.warning(
            "No unique question for user %d after %d attempts, sending last candidate",
            user.chat_id, self._max_attempts,
        )
        return candidate
