"""Message port — abstract interface for sending messages to chats.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class MessageSendError(Exception):
    """Raised when a message could not be delivered."""


class FormatRejected(MessageSendError):
    """The transport could not parse the rich formatting of the text."""


class TransportError(MessageSendError):
    """Any other delivery failure (network, blocked chat, rate limit...)."""


class MessageSender(Protocol):
    """Abstract message sending interface used by core modules."""

    async def send(self, chat_id: int, text: str, formatted: bool = True) -> None: ...
