"""
Interview Question Bot — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from interview_bot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""        # operator key, used when a user has none

    # Chats created as admins on first contact
    ADMIN_CHAT_IDS: list[int] = []

    # SQLite
    DATABASE_PATH: str = "data/questions.db"

    # Scheduling
    TIMEZONE: str = "UTC"
    DEFAULT_SCHEDULE: str = "0 9 * * *"

    # Question language: "en" | "es"
    QUESTION_LANGUAGE: str = "en"

    @field_validator("ADMIN_CHAT_IDS", mode="before")
    @classmethod
    def parse_chat_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(cid.strip()) for cid in v.split(",") if cid.strip()]
        return []

    @field_validator("QUESTION_LANGUAGE", mode="before")
    @classmethod
    def parse_language(cls, v: str) -> str:
        v = (v or "en").strip().lower()
        return v if v in ("en", "es") else "en"


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    llm_api_key = os.getenv("LLM_API_KEY", "")
    if llm_api_key.startswith("your-"):
        llm_api_key = ""

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        ADMIN_CHAT_IDS=os.getenv("ADMIN_CHAT_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/questions.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        DEFAULT_SCHEDULE=os.getenv("DEFAULT_SCHEDULE", "0 9 * * *"),
        QUESTION_LANGUAGE=os.getenv("QUESTION_LANGUAGE", "en"),
    )


# Singleton — imported by all other modules as:
#   from interview_bot.config import settings
settings = _load_settings()
