"""
Interview Question Bot — Access Policy.

Two gates stand between a user and a question:

- approval: when the operator requires it, only approved users receive
  questions
- API key: when the operator requires it, users must bring their own key

Admins bypass both. API-key resolution lives here and nowhere else; the
generator only ever receives the key this module resolved.
"""

from __future__ import annotations

import logging
from enum import Enum

from interview_bot.data.models import BotSettings, User
from interview_bot.ports.repository_port import Repository, StorageError

logger = logging.getLogger(__name__)

# Used when the settings row cannot be read. Both gates open; admin rights
# still come only from the user row.
FALLBACK_SETTINGS = BotSettings(require_user_approval=False, require_api_key=False)

# /setapikey only accepts Gemini keys
USER_KEY_PROVIDER = "gemini"


class DenialReason(Enum):
    NOT_APPROVED = "not_approved"
    API_KEY_REQUIRED = "api_key_required"
    DAILY_LIMIT = "daily_limit"
    INACTIVE = "inactive"
    NOT_REGISTERED = "not_registered"
    NOT_ADMIN = "not_admin"


class PolicyDenied(Exception):
    """The user may not receive or request a question right now."""

    def __init__(self, reason: DenialReason, message: str = "") -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class AccessPolicy:
    """Evaluates the approval and API-key gates for one user."""

    def __init__(
        self,
        repo: Repository,
        operator_api_key: str = "",
        provider: str = USER_KEY_PROVIDER,
    ) -> None:
        self._repo = repo
        self._operator_api_key = operator_api_key or None
        self._accepts_user_keys = provider.lower() == USER_KEY_PROVIDER

    async def current_settings(self) -> BotSettings:
        """Load the settings row, falling back to FALLBACK_SETTINGS on failure."""
        try:
            return await self._repo.get_settings()
        except StorageError as exc:
            logger.error("Settings unavailable, using fallback defaults: %s", exc)
            return FALLBACK_SETTINGS

    @staticmethod
    def can_receive(user: User, settings: BotSettings) -> bool:
        return user.is_admin or not settings.require_user_approval or user.is_approved

    def resolve_api_key(self, user: User, settings: BotSettings) -> str | None:
        """User's own key, else None when a key is required, else the operator key.

        A user key is only used when the configured provider is the one
        user keys are issued for.
        """
        if user.api_key and self._accepts_user_keys:
            return user.api_key
        if settings.require_api_key and not user.is_admin:
            return None
        return self._operator_api_key

    def can_generate(self, user: User, settings: BotSettings) -> bool:
        return not settings.require_api_key or self.resolve_api_key(user, settings) is not None

    async def authorize(self, user: User, settings: BotSettings | None = None) -> str | None:
        """Check both gates and return the API key to generate with.

        Raises PolicyDenied when either gate is closed.
        """
        if settings is None:
            settings = await self.current_settings()

        if not self.can_receive(user, settings):
            raise PolicyDenied(
                DenialReason.NOT_APPROVED,
                "Your account is pending approval by an administrator.",
            )
        if not self.can_generate(user, settings):
            raise PolicyDenied(
                DenialReason.API_KEY_REQUIRED,
                "API key required but not provided. Use /setapikey to set your key.",
            )
        return self.resolve_api_key(user, settings)
