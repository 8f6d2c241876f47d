"""
Interview Question Bot — Delivery Pipeline.

Sends a question, then its answer, through a MessageSender. Answers longer
than the transport limit are split into ordered chunks that never cut a
fenced code block in half. Each message is first sent with formatting and,
if the transport cannot parse it, once more as plain text.

deliver() reports success only when the question and every answer chunk
were confirmed sent.
"""

from __future__ import annotations

import asyncio
import logging

from interview_bot.ports.message_port import FormatRejected, MessageSender, MessageSendError

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000    # Telegram hard limit is 4096
ANSWER_PREFIX = "*🔍 Answer:*\n\n"
_FENCE = "```"
_FENCE_CLOSE_RESERVE = len("\n" + _FENCE)


def format_question(question: str, category: str) -> str:
    return f"*🧩 {category[:1].upper()}{category[1:]} Question:*\n\n{question}"


def _hard_wrap(line: str, width: int) -> list[str]:
    if len(line) <= width:
        return [line]
    return [line[i:i + width] for i in range(0, len(line), width)]


def _close_fence(chunk: str) -> str:
    return chunk + (_FENCE if chunk.endswith("\n") else "\n" + _FENCE)


def _has_content(chunk: str) -> bool:
    return any(
        line.strip() and not line.strip().startswith(_FENCE) for line in chunk.splitlines()
    )


def split_message(text: str, max_length: int) -> list[str]:
    """Split text into ordered chunks of at most max_length characters.

    Works line by line. When a chunk has to be closed inside a fenced code
    region, the chunk gets a closing fence and the next chunk reopens the
    region with the same opening fence line. Lines longer than the budget
    are cut hard. Apart from that fence repair, joining the chunks gives
    back the original text.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""
    opener: str | None = None    # fence line of the code region we are inside

    for line in text.splitlines(keepends=True):
        is_fence = line.strip().startswith(_FENCE)
        if opener is None:
            width = max_length
        else:
            width = max(1, max_length - len(opener) - _FENCE_CLOSE_RESERVE)
        # room for a closing fence once a code region is (or is about to be) open
        reserve = _FENCE_CLOSE_RESERVE if opener is not None or is_fence else 0

        for piece in _hard_wrap(line, width):
            if current and len(current) + len(piece) + reserve > max_length:
                chunks.append(_close_fence(current) if opener is not None else current)
                current = opener if opener is not None else ""
            current += piece

        if is_fence:
            if opener is None:
                opener = line if line.endswith("\n") else line + "\n"
            else:
                opener = None

    if current:
        if opener is not None:
            current = _close_fence(current)
        chunks.append(current)

    return [chunk for chunk in chunks if _has_content(chunk)]


class DeliveryPipeline:
    """Sends question/answer pairs through a MessageSender."""

    def __init__(
        self,
        sender: MessageSender,
        max_length: int = MAX_MESSAGE_LENGTH,
        answer_delay: float = 1.0,
        chunk_delay: float = 0.5,
    ) -> None:
        self._sender = sender
        self._max_length = max_length
        self._answer_delay = answer_delay
        self._chunk_delay = chunk_delay

    async def _send_with_fallback(self, chat_id: int, text: str) -> None:
        """Send formatted; on FormatRejected retry once as plain text.

        Raises MessageSendError when the message could not be sent.
        """
        try:
            await self._sender.send(chat_id, text, formatted=True)
        except FormatRejected as exc:
            logger.warning(
                "Formatting rejected for chat %d (%s), retrying as plain text", chat_id, exc,
            )
            await self._sender.send(chat_id, text, formatted=False)

    def answer_chunks(self, answer: str) -> list[str]:
        """The answer messages to send, the first one carrying the prefix."""
        if len(answer) + len(ANSWER_PREFIX) > self._max_length:
            chunks = split_message(answer, self._max_length - len(ANSWER_PREFIX)) or [answer]
        else:
            chunks = [answer]
        chunks[0] = ANSWER_PREFIX + chunks[0]
        return chunks

    async def deliver(self, chat_id: int, question: str, answer: str, category: str) -> bool:
        """Send the question, then every answer chunk, strictly in order."""
        try:
            await self._send_with_fallback(chat_id, format_question(question, category))
        except MessageSendError as exc:
            logger.error("Failed to send question to chat %d: %s", chat_id, exc)
            return False

        await asyncio.sleep(self._answer_delay)

        chunks = self.answer_chunks(answer)
        for index, chunk in enumerate(chunks):
            if index > 0:
                await asyncio.sleep(self._chunk_delay)
            try:
                await self._send_with_fallback(chat_id, chunk)
            except MessageSendError as exc:
                logger.error(
                    "Failed to send answer chunk %d/%d to chat %d: %s",
                    index + 1, len(chunks), chat_id, exc,
                )
                return False

        logger.info("Question delivered to chat %d in %d answer message(s)", chat_id, len(chunks))
        return True
