"""
Interview Question Bot — Per-user Question Scheduler.

Every active user owns one recurring trigger, built from the cron-style
schedule stored on their row. The registry maps chat id → trigger and is
the only place triggers are created or cancelled:

- register() replaces any existing trigger for the chat
- cancel() stops future firings, never a delivery already running
- rebuild() replays every active user's schedule after a restart

A firing runs the per-user pipeline; whatever it raises is logged and
never reaches the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from interview_bot.ports.repository_port import Repository

logger = logging.getLogger(__name__)

FireFn = Callable[[int], Awaitable[Any]]


class SchedulingError(Exception):
    """Raised when a recurrence expression cannot be parsed."""


@dataclass(frozen=True)
class ScheduledTrigger:
    """The live trigger of one chat."""

    chat_id: int
    expression: str
    job: Job


def parse_expression(expr: str, timezone: str = "UTC") -> CronTrigger:
    """Validate a 5-field crontab expression and build its trigger."""
    try:
        return CronTrigger.from_crontab(expr.strip(), timezone=timezone)
    except (ValueError, TypeError, AttributeError) as exc:
        raise SchedulingError(f"Invalid schedule {expr!r}: {exc}") from exc


def daily_expression(hour: int, minute: int) -> str:
    """Crontab expression firing every day at hour:minute."""
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise SchedulingError(f"Invalid time {hour}:{minute}")
    return f"{minute} {hour} * * *"


def describe_expression(expr: str | None) -> str | None:
    """'HH:MM' for a daily expression, None when it is anything fancier."""
    if not expr:
        return None
    parts = expr.split()
    if len(parts) < 2 or not (parts[0].isdigit() and parts[1].isdigit()):
        return None
    minute, hour = int(parts[0]), int(parts[1])
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


class SchedulerRegistry:
    """Owns at most one recurring trigger per chat."""

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        fire: FireFn,
        timezone: str = "UTC",
    ) -> None:
        self._scheduler = scheduler
        self._fire = fire
        self._timezone = timezone
        self._triggers: dict[int, ScheduledTrigger] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._inflight: dict[int, set[asyncio.Task]] = {}

    def validate(self, expr: str) -> None:
        """Raise SchedulingError if expr is not a valid schedule."""
        parse_expression(expr, self._timezone)

    def get(self, chat_id: int) -> ScheduledTrigger | None:
        return self._triggers.get(chat_id)

    def active_chat_ids(self) -> list[int]:
        return sorted(self._triggers)

    def __len__(self) -> int:
        return len(self._triggers)

    @staticmethod
    def _job_id(chat_id: int) -> str:
        return f"question:{chat_id}"

    def _lock_for(self, chat_id: int) -> asyncio.Lock:
        return self._locks.setdefault(chat_id, asyncio.Lock())

    def _remove(self, chat_id: int) -> bool:
        entry = self._triggers.pop(chat_id, None)
        if entry is None:
            return False
        try:
            entry.job.remove()
        except JobLookupError:
            logger.debug("Job for chat %d already gone from the scheduler", chat_id)
        return True

    async def _settle(self, chat_id: int) -> None:
        """Wait for firings of the old trigger that are still running."""
        running = self._inflight.get(chat_id, set()) - {asyncio.current_task()}
        if running:
            logger.info("Waiting for %d in-flight delivery(ies) to chat %d", len(running), chat_id)
            await asyncio.gather(*running, return_exceptions=True)

    async def register(self, chat_id: int, expr: str) -> ScheduledTrigger:
        """Install (or replace) the trigger for a chat.

        An invalid expression raises SchedulingError and leaves any existing
        trigger untouched. Otherwise the old trigger is cancelled, its
        in-flight firings are awaited, and only then is the new one added.
        """
        trigger = parse_expression(expr, self._timezone)

        async with self._lock_for(chat_id):
            replaced = self._remove(chat_id)
            await self._settle(chat_id)
            job = self._scheduler.add_job(
                self._run,
                trigger,
                args=[chat_id],
                id=self._job_id(chat_id),
                name=f"daily question for {chat_id}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
            )
            entry = ScheduledTrigger(chat_id=chat_id, expression=expr, job=job)
            self._triggers[chat_id] = entry

        logger.info(
            "%s trigger for chat %d: '%s'",
            "Replaced" if replaced else "Registered", chat_id, expr,
        )
        return entry

    async def cancel(self, chat_id: int) -> bool:
        """Stop future firings for a chat. Returns False if there was none."""
        async with self._lock_for(chat_id):
            removed = self._remove(chat_id)
        if removed:
            logger.info("Cancelled trigger for chat %d", chat_id)
        return removed

    async def rebuild(self, repo: Repository) -> int:
        """Drop every trigger and re-register one per active user."""
        for chat_id in list(self._triggers):
            await self.cancel(chat_id)

        users = await repo.list_users(active_only=True)
        for user in users:
            try:
                await self.register(user.chat_id, user.schedule_expr)
            except SchedulingError as exc:
                logger.error("Skipping stored schedule of chat %d: %s", user.chat_id, exc)

        logger.info("Scheduler rebuilt: %d trigger(s) for %d active user(s)", len(self), len(users))
        return len(self)

    async def _run(self, chat_id: int) -> None:
        task = asyncio.current_task()
        running = self._inflight.setdefault(chat_id, set())
        if task is not None:
            running.add(task)
        logger.info("Trigger fired for chat %d", chat_id)
        try:
            await self._fire(chat_id)
        except Exception:
            logger.exception("Scheduled question for chat %d failed", chat_id)
        finally:
            if task is not None:
                running.discard(task)
