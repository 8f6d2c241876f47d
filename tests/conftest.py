"""Shared test fixtures and configuration.

Sets up fake environment variables so interview_bot.config doesn't
sys.exit(), and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any interview_bot imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ADMIN_CHAT_IDS", "999")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

import pytest
from unittest.mock import AsyncMock

from interview_bot.data.models import BotSettings


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_questions.db")


@pytest.fixture
def question_db(tmp_db_path):
    """Return a QuestionDB instance backed by a temp file."""
    from interview_bot.data.db import QuestionDB
    return QuestionDB(db_path=tmp_db_path)


@pytest.fixture
def mock_repo():
    """An AsyncMock repository with permissive defaults."""
    repo = AsyncMock()
    repo.get_settings.return_value = BotSettings()
    repo.recent_questions.return_value = []
    repo.is_question_unique.return_value = True
    repo.count_questions_since.return_value = 0
    repo.list_users.return_value = []
    repo.list_admins.return_value = []
    return repo
