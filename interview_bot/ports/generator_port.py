"""Generator port — abstract interface for producing question candidates.

Generators know nothing about users; the caller supplies the API key.
"""

from __future__ import annotations

from typing import Protocol

from interview_bot.data.models import QuestionCandidate


class GenerationError(Exception):
    """Raised when a candidate could not be produced."""


class UnparsableResponse(GenerationError):
    """The model answered, but no question/answer pair could be recovered."""


class InvalidApiKey(GenerationError):
    """The provider rejected the API key as invalid or expired."""


class NoApiKeyAvailable(GenerationError):
    """No API key could be resolved for this request."""


class QuestionGenerator(Protocol):
    """Abstract question generator used by core modules."""

    async def generate(
        self,
        category: str,
        avoid_hints: list[str],
        language: str = "en",
        api_key: str | None = None,
    ) -> QuestionCandidate: ...
