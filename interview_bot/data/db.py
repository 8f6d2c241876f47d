"""
Interview Question Bot — Question Database.

Users, the process-wide settings row and every delivered question persist
in SQLite across restarts. Each public method is a coroutine: the blocking
sqlite3 work runs in a worker thread so the event loop never stalls, and
every sqlite3 error leaves this module as a StorageError.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from interview_bot.data.models import DEFAULT_SCHEDULE, BotSettings, QuestionRecord, User
from interview_bot.ports.repository_port import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Columns of the single settings row, with their defaults
_SETTING_DEFAULTS: dict[str, int] = {
    "require_user_approval": 0,
    "require_api_key": 0,
    "max_questions_per_day": 10,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class QuestionDB:
    """SQLite-backed storage for users, settings and sent questions."""

    def __init__(
        self,
        db_path: str | None = None,
        default_schedule: str = DEFAULT_SCHEDULE,
    ) -> None:
        if db_path is None:
            from interview_bot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._default_schedule = default_schedule
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    async def _run(self, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(fn)
        except sqlite3.Error as exc:
            logger.error("Database operation failed: %s", exc)
            raise StorageError(str(exc)) from exc

    def _init_db(self) -> None:
        """Create tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id           INTEGER NOT NULL UNIQUE,
                    display_name      TEXT    NOT NULL,
                    username          TEXT,
                    is_admin          INTEGER NOT NULL DEFAULT 0,
                    is_active         INTEGER NOT NULL DEFAULT 1,
                    is_approved       INTEGER NOT NULL DEFAULT 0,
                    api_key           TEXT,
                    schedule          TEXT    NOT NULL DEFAULT '0 9 * * *',
                    last_question_at  TEXT,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sent_questions (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id   INTEGER NOT NULL REFERENCES users(id),
                    question  TEXT    NOT NULL,
                    answer    TEXT    NOT NULL,
                    category  TEXT    NOT NULL,
                    sent_at   TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    id                     INTEGER PRIMARY KEY CHECK (id = 1),
                    require_user_approval  INTEGER NOT NULL DEFAULT 0,
                    require_api_key        INTEGER NOT NULL DEFAULT 0,
                    max_questions_per_day  INTEGER NOT NULL DEFAULT 10
                )
            """)
            conn.execute("INSERT OR IGNORE INTO settings (id) VALUES (1)")

            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "api_key" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN api_key TEXT")
            if "schedule" not in existing_cols:
                conn.execute(
                    "ALTER TABLE users ADD COLUMN schedule TEXT NOT NULL DEFAULT '0 9 * * *'"
                )
            if "last_question_at" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN last_question_at TEXT")
            if "is_active" not in existing_cols:
                conn.execute(
                    "ALTER TABLE users ADD COLUMN is_active INTEGER NOT NULL DEFAULT 1"
                )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sent_questions_user "
                "ON sent_questions (user_id, sent_at)"
            )
        logger.debug("Question database initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            chat_id=row["chat_id"],
            display_name=row["display_name"],
            username=row["username"],
            is_admin=bool(row["is_admin"]),
            is_active=bool(row["is_active"]),
            is_approved=bool(row["is_approved"]),
            api_key=row["api_key"],
            schedule_expr=row["schedule"],
            last_question_at=row["last_question_at"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> QuestionRecord:
        return QuestionRecord(
            id=row["id"],
            user_id=row["user_id"],
            question=row["question"],
            answer=row["answer"],
            category=row["category"],
            sent_at=row["sent_at"],
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, chat_id: int) -> User | None:
        """Fetch a user by chat ID."""
        def _query() -> User | None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM users WHERE chat_id = ?", (chat_id,),
                ).fetchone()
            return None if row is None else self._row_to_user(row)

        return await self._run(_query)

    async def create_user(
        self, chat_id: int, name: str, username: str | None = None,
    ) -> int:
        """Insert a new, unapproved user. Fails if the chat is already known."""
        def _insert() -> int:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (chat_id, display_name, username, schedule, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (chat_id, name, username, self._default_schedule, _now()),
                )
            return cursor.lastrowid

        user_id = await self._run(_insert)
        logger.info("User registered: %d '%s'", chat_id, name)
        return user_id

    async def ensure_user(
        self,
        chat_id: int,
        name: str,
        username: str | None = None,
        is_admin: bool = False,
        is_approved: bool = False,
    ) -> tuple[User, bool]:
        """Return the user for chat_id, creating it on first contact.

        Idempotent: the UNIQUE constraint on chat_id means a concurrent
        second insert fails and the existing row is read back instead, so
        one chat never owns two rows. An existing row is promoted when
        is_admin is set, so a chat added to the admin list later still
        becomes admin. Returns (user, created).
        """
        def _ensure() -> tuple[User, bool]:
            with self._connect() as conn:
                try:
                    conn.execute(
                        """
                        INSERT INTO users
                            (chat_id, display_name, username, is_admin,
                             is_approved, schedule, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (chat_id, name, username, int(is_admin),
                         int(is_approved or is_admin), self._default_schedule, _now()),
                    )
                    created = True
                except sqlite3.IntegrityError:
                    created = False
                    if is_admin:
                        conn.execute(
                            "UPDATE users SET is_admin = 1, is_approved = 1 "
                            "WHERE chat_id = ? AND is_admin = 0",
                            (chat_id,),
                        )
                row = conn.execute(
                    "SELECT * FROM users WHERE chat_id = ?", (chat_id,),
                ).fetchone()
            return self._row_to_user(row), created

        user, created = await self._run(_ensure)
        if created:
            logger.info(
                "User registered: %d '%s' (admin=%s, approved=%s)",
                chat_id, name, user.is_admin, user.is_approved,
            )
        return user, created

    async def update_schedule(self, chat_id: int, expr: str) -> None:
        """Store a user's recurrence expression."""
        def _update() -> None:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE users SET schedule = ? WHERE chat_id = ?", (expr, chat_id),
                )

        await self._run(_update)
        logger.info("Schedule for %d set to '%s'", chat_id, expr)

    async def update_last_sent(self, chat_id: int) -> None:
        """Stamp the moment the latest question reached this user."""
        def _update() -> None:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE users SET last_question_at = ? WHERE chat_id = ?",
                    (_now(), chat_id),
                )

        await self._run(_update)

    async def list_users(self, active_only: bool = True) -> list[User]:
        """Return registered users, oldest first."""
        query = "SELECT * FROM users"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at, id"

        def _query() -> list[User]:
            with self._connect() as conn:
                rows = conn.execute(query).fetchall()
            return [self._row_to_user(r) for r in rows]

        return await self._run(_query)

    async def list_pending_users(self) -> list[User]:
        """Return non-admin users still waiting for approval."""
        def _query() -> list[User]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM users WHERE is_approved = 0 AND is_admin = 0 "
                    "ORDER BY created_at, id"
                ).fetchall()
            return [self._row_to_user(r) for r in rows]

        return await self._run(_query)

    async def list_admins(self) -> list[User]:
        def _query() -> list[User]:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM users WHERE is_admin = 1 ORDER BY id"
                ).fetchall()
            return [self._row_to_user(r) for r in rows]

        return await self._run(_query)

    async def is_admin(self, chat_id: int) -> bool:
        def _query() -> bool:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT is_admin FROM users WHERE chat_id = ?", (chat_id,),
                ).fetchone()
            return row is not None and bool(row["is_admin"])

        return await self._run(_query)

    async def approve_user(self, chat_id: int) -> bool:
        """Mark a user approved. Returns False if the chat is unknown."""
        def _update() -> bool:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE users SET is_approved = 1 WHERE chat_id = ?", (chat_id,),
                )
            return cursor.rowcount > 0

        approved = await self._run(_update)
        if approved:
            logger.info("User %d approved", chat_id)
        return approved

    async def set_active(self, chat_id: int, active: bool) -> bool:
        """Soft-(de)activate a user. Users are never hard-deleted."""
        def _update() -> bool:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE users SET is_active = ? WHERE chat_id = ?",
                    (int(active), chat_id),
                )
            return cursor.rowcount > 0

        changed = await self._run(_update)
        if changed:
            logger.info("User %d marked %s", chat_id, "active" if active else "inactive")
        return changed

    async def set_api_key(self, chat_id: int, key: str | None) -> None:
        """Store (or clear, with None) a user's own API key."""
        def _update() -> None:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE users SET api_key = ? WHERE chat_id = ?", (key, chat_id),
                )

        await self._run(_update)
        logger.info("API key %s for user %d", "set" if key else "cleared", chat_id)

    async def get_api_key(self, chat_id: int) -> str | None:
        """Return the user's own API key, without any operator fallback."""
        def _query() -> str | None:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT api_key FROM users WHERE chat_id = ?", (chat_id,),
                ).fetchone()
            return row["api_key"] if row is not None and row["api_key"] else None

        return await self._run(_query)

    # ------------------------------------------------------------------
    # Settings (single row)
    # ------------------------------------------------------------------

    async def get_setting(self, key: str, default: object = None) -> object:
        """Read one column of the settings row, or default if unknown."""
        if key not in _SETTING_DEFAULTS:
            return default

        def _query() -> object:
            with self._connect() as conn:
                row = conn.execute(f"SELECT {key} FROM settings WHERE id = 1").fetchone()
            return default if row is None else row[key]

        return await self._run(_query)

    async def update_setting(self, key: str, value: object) -> None:
        """Write one column of the settings row."""
        if key not in _SETTING_DEFAULTS:
            raise ValueError(f"Unknown setting {key!r}")
        value = int(value)

        def _update() -> None:
            with self._connect() as conn:
                conn.execute("INSERT OR IGNORE INTO settings (id) VALUES (1)")
                conn.execute(f"UPDATE settings SET {key} = ? WHERE id = 1", (value,))

        await self._run(_update)
        logger.info("Setting %s = %d", key, value)

    async def get_settings(self) -> BotSettings:
        """Return a typed snapshot of the settings row."""
        def _query() -> BotSettings:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM settings WHERE id = 1").fetchone()
            if row is None:
                return BotSettings()
            return BotSettings(
                require_user_approval=bool(row["require_user_approval"]),
                require_api_key=bool(row["require_api_key"]),
                max_questions_per_day=row["max_questions_per_day"],
            )

        return await self._run(_query)

    # ------------------------------------------------------------------
    # Question history
    # ------------------------------------------------------------------

    async def save_question(
        self, user_id: int, question: str, answer: str, category: str,
    ) -> int:
        """Record a delivered question. Records are never updated."""
        def _insert() -> int:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO sent_questions (user_id, question, answer, category, sent_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user_id, question, answer, category, _now()),
                )
            return cursor.lastrowid

        record_id = await self._run(_insert)
        logger.info("Question #%d saved for user %d", record_id, user_id)
        return record_id

    async def recent_questions(self, user_id: int, limit: int = 20) -> list[QuestionRecord]:
        """Most recently sent questions for one user, newest first."""
        def _query() -> list[QuestionRecord]:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM sent_questions
                    WHERE user_id = ?
                    ORDER BY sent_at DESC, id DESC
                    LIMIT ?
                    """,
                    (user_id, limit),
                ).fetchall()
            return [self._row_to_record(r) for r in rows]

        return await self._run(_query)

    async def is_question_unique(self, user_id: int, question: str) -> bool:
        """Case-insensitive exact match against the user's whole history."""
        needle = question.strip().casefold()

        def _query() -> bool:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT question FROM sent_questions WHERE user_id = ?", (user_id,),
                ).fetchall()
            return all(r["question"].strip().casefold() != needle for r in rows)

        return await self._run(_query)

    async def count_questions_since(self, user_id: int, since: datetime) -> int:
        """Number of questions sent to a user at or after `since`."""
        since_iso = since.astimezone(timezone.utc).isoformat()

        def _query() -> int:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS n FROM sent_questions WHERE user_id = ? AND sent_at >= ?",
                    (user_id, since_iso),
                ).fetchone()
            return row["n"]

        return await self._run(_query)

    async def question_stats(self, user_id: int | None = None) -> tuple[int, dict[str, int]]:
        """Return (total, {category: count}) for one user or everyone."""
        query = "SELECT category, COUNT(*) AS n FROM sent_questions"
        params: list = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " GROUP BY category ORDER BY category"

        def _query() -> tuple[int, dict[str, int]]:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
            by_category = {r["category"]: r["n"] for r in rows}
            return sum(by_category.values()), by_category

        return await self._run(_query)

    async def delete_questions(self, user_id: int | None = None) -> int:
        """Delete one user's history, or everyone's with None. Returns the count."""
        def _delete() -> int:
            with self._connect() as conn:
                if user_id is None:
                    cursor = conn.execute("DELETE FROM sent_questions")
                else:
                    cursor = conn.execute(
                        "DELETE FROM sent_questions WHERE user_id = ?", (user_id,),
                    )
            return cursor.rowcount

        count = await self._run(_delete)
        logger.info(
            "Deleted %d questions (%s)", count,
            "all users" if user_id is None else f"user {user_id}",
        )
        return count
