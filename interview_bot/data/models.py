"""
Interview Question Bot — Data Models.

Users and their question history persist in SQLite across restarts.
Triggers are never stored: they are rebuilt from each user's schedule.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_SCHEDULE = "0 9 * * *"


@dataclass
class User:
    """A bot user, identified by the Telegram chat they talk from."""

    id: int
    chat_id: int
    display_name: str
    username: str | None = None
    is_admin: bool = False
    is_active: bool = True
    is_approved: bool = False
    api_key: str | None = None
    schedule_expr: str = DEFAULT_SCHEDULE
    last_question_at: str | None = None   # ISO timestamp, None if never sent
    created_at: str = ""


@dataclass(frozen=True)
class QuestionRecord:
    """A question/answer pair that was confirmed delivered to one user."""

    id: int
    user_id: int
    question: str
    answer: str
    category: str
    sent_at: str


@dataclass(frozen=True)
class BotSettings:
    """Process-wide switches, stored as a single row."""

    require_user_approval: bool = False
    require_api_key: bool = False
    max_questions_per_day: int = 10    # on-demand cap for non-admins, 0 = off


@dataclass(frozen=True)
class QuestionCandidate:
    """A generated triple, not yet confirmed unique or delivered."""

    question: str
    answer: str
    category: str
