"""Telegram message adapter — implements MessageSender.

Wraps a telegram.Bot instance to satisfy the MessageSender protocol and
translates python-telegram-bot errors into the port's error types.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from interview_bot.ports.message_port import FormatRejected, TransportError

logger = logging.getLogger(__name__)

# Telegram's wording when Markdown entities cannot be parsed
_PARSE_ERROR_MARKERS = ("can't parse entities", "can't find end of the entity")


def _is_parse_error(exc: BadRequest) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _PARSE_ERROR_MARKERS)


class TelegramSender:
    """Telegram implementation of MessageSender."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, chat_id: int, text: str, formatted: bool = True) -> None:
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN if formatted else None,
            )
        except BadRequest as exc:
            if formatted and _is_parse_error(exc):
                raise FormatRejected(str(exc)) from exc
            raise TransportError(str(exc)) from exc
        except TelegramError as exc:
            logger.debug("Telegram send to chat %d failed: %s", chat_id, exc)
            raise TransportError(str(exc)) from exc
