"""
Interview Question Bot — LLM Response Parser.

Turns the model's raw text into a question/answer pair. Models are asked for
bare JSON but often wrap it in a code fence or break the escaping inside a
long answer, so parsing falls through three tiers:

1. the raw text as JSON
2. the contents of a fenced code block as JSON
3. lenient extraction of the "question" and "answer" string fields

The result is tagged so callers can tell a clean parse from a recovery.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# outermost block first, so code fences inside the answer do not end it early
_FENCED_BLOCKS = (
    re.compile(r"```(?:json)?\s*(.*)```", re.DOTALL),
    re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL),
)
_QUESTION_FIELD = re.compile(r'"question"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_ANSWER_FIELD = re.compile(r'"answer"\s*:\s*"(.*?)(?="\s*\}|$)', re.DOTALL)


class QuestionPayload(BaseModel):
    """The JSON object the model is told to return.

    JSON example:
    {
        "question": "What is a closure?",
        "answer": "A function that keeps access to its lexical scope..."
    }
    """
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


class ParseStatus(Enum):
    PARSED = "parsed"
    RECOVERED = "recovered"
    UNPARSABLE = "unparsable"


@dataclass(frozen=True)
class ParseResult:
    status: ParseStatus
    question: str = ""
    answer: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not ParseStatus.UNPARSABLE


def _load_payload(text: str) -> QuestionPayload | None:
    try:
        return QuestionPayload.model_validate(json.loads(text.strip()))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


def _unescape(value: str) -> str:
    return value.replace("\\n", "\n").replace("\\t", "\t").replace('\\"', '"').strip()


def parse_response(raw_text: str) -> ParseResult:
    """Parse a model reply. Never raises; failure is ParseStatus.UNPARSABLE."""
    if not raw_text or not raw_text.strip():
        return ParseResult(ParseStatus.UNPARSABLE)

    payload = _load_payload(raw_text)
    if payload is not None:
        return ParseResult(ParseStatus.PARSED, payload.question, payload.answer)

    for pattern in _FENCED_BLOCKS:
        block = pattern.search(raw_text)
        if block is None:
            continue
        payload = _load_payload(block.group(1))
        if payload is not None:
            return ParseResult(ParseStatus.PARSED, payload.question, payload.answer)

    question_match = _QUESTION_FIELD.search(raw_text)
    answer_match = _ANSWER_FIELD.search(raw_text)
    if question_match and answer_match:
        question = _unescape(question_match.group(1))
        answer = _unescape(answer_match.group(1))
        if question and answer:
            logger.warning("LLM response was not valid JSON; fields recovered by pattern")
            return ParseResult(ParseStatus.RECOVERED, question, answer)

    logger.error("All parse tiers failed for LLM response: '%s'", raw_text[:200])
    return ParseResult(ParseStatus.UNPARSABLE)
