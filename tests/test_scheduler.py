"""Tests for interview_bot.core.scheduler — per-chat trigger registry.

The APScheduler instance is never started: jobs stay pending, which is
enough to inspect what was registered. Firings are driven by calling the
registry's job function directly.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from interview_bot.core.scheduler import (
    SchedulerRegistry,
    SchedulingError,
    daily_expression,
    describe_expression,
    parse_expression,
)
from tests.factories import make_user


@pytest.fixture
def scheduler():
    return AsyncIOScheduler(timezone="UTC")


@pytest.fixture
def fire():
    return AsyncMock()


@pytest.fixture
def registry(scheduler, fire):
    return SchedulerRegistry(scheduler, fire, timezone="UTC")


# ---------------------------------------------------------------------------
# Expression helpers
# ---------------------------------------------------------------------------


class TestExpressions:
    def test_parse_valid(self):
        assert isinstance(parse_expression("0 9 * * *"), CronTrigger)

    @pytest.mark.parametrize("expr", ["", "not a cron", "99 99 * * *", "0 9 * *"])
    def test_parse_invalid(self, expr):
        with pytest.raises(SchedulingError):
            parse_expression(expr)

    def test_daily_expression(self):
        assert daily_expression(8, 30) == "30 8 * * *"

    def test_daily_expression_out_of_range(self):
        with pytest.raises(SchedulingError):
            daily_expression(24, 0)
        with pytest.raises(SchedulingError):
            daily_expression(8, 60)

    def test_describe(self):
        assert describe_expression("30 8 * * *") == "08:30"
        assert describe_expression("*/5 * * * *") is None
        assert describe_expression(None) is None


# ---------------------------------------------------------------------------
# register / cancel
# ---------------------------------------------------------------------------


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_creates_one_job(self, registry, scheduler):
        entry = await registry.register(1, "0 8 * * *")
        assert entry.expression == "0 8 * * *"
        assert len(scheduler.get_jobs()) == 1
        assert registry.active_chat_ids() == [1]

    @pytest.mark.asyncio
    async def test_reregister_replaces_trigger(self, registry, scheduler):
        await registry.register(1, "0 8 * * *")
        await registry.register(1, "30 9 * * *")

        jobs = scheduler.get_jobs()
        assert len(jobs) == 1
        assert len(registry) == 1
        assert registry.get(1).expression == "30 9 * * *"
        assert str(jobs[0].trigger) == str(parse_expression("30 9 * * *"))

    @pytest.mark.asyncio
    async def test_invalid_expression_keeps_old_trigger(self, registry, scheduler):
        await registry.register(1, "0 8 * * *")
        with pytest.raises(SchedulingError):
            await registry.register(1, "garbage")
        assert registry.get(1).expression == "0 8 * * *"
        assert len(scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_triggers_are_per_chat(self, registry, scheduler):
        await registry.register(1, "0 8 * * *")
        await registry.register(2, "0 8 * * *")
        assert registry.active_chat_ids() == [1, 2]
        assert len(scheduler.get_jobs()) == 2

    @pytest.mark.asyncio
    async def test_cancel(self, registry, scheduler):
        await registry.register(1, "0 8 * * *")
        assert await registry.cancel(1) is True
        assert registry.get(1) is None
        assert scheduler.get_jobs() == []
        assert await registry.cancel(1) is False

    @pytest.mark.asyncio
    async def test_register_waits_for_inflight_fire(self, scheduler):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_fire(chat_id):
            started.set()
            await release.wait()

        registry = SchedulerRegistry(scheduler, slow_fire)
        await registry.register(1, "0 8 * * *")

        firing = asyncio.create_task(registry._run(1))
        await started.wait()
        replacing = asyncio.create_task(registry.register(1, "30 9 * * *"))
        await asyncio.sleep(0.01)
        assert not replacing.done()

        release.set()
        await replacing
        await firing
        assert registry.get(1).expression == "30 9 * * *"


# ---------------------------------------------------------------------------
# Firing and rebuild
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_run_calls_fire(self, registry, fire):
        await registry._run(5)
        fire.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_run_swallows_errors(self, registry, fire):
        fire.side_effect = RuntimeError("boom")
        await registry._run(5)   # must not raise
        fire.assert_awaited_once_with(5)


class TestRebuild:
    @pytest.mark.asyncio
    async def test_rebuild_from_active_users(self, registry, scheduler, mock_repo):
        mock_repo.list_users.return_value = [
            make_user(chat_id=1, schedule_expr="0 8 * * *"),
            make_user(chat_id=2, schedule_expr="15 20 * * *"),
        ]

        count = await registry.rebuild(mock_repo)

        assert count == 2
        mock_repo.list_users.assert_awaited_once_with(active_only=True)
        assert registry.get(2).expression == "15 20 * * *"
        assert len(scheduler.get_jobs()) == 2

    @pytest.mark.asyncio
    async def test_rebuild_skips_invalid_schedule(self, registry, mock_repo):
        mock_repo.list_users.return_value = [
            make_user(chat_id=1, schedule_expr="broken"),
            make_user(chat_id=2, schedule_expr="0 8 * * *"),
        ]
        assert await registry.rebuild(mock_repo) == 1
        assert registry.active_chat_ids() == [2]

    @pytest.mark.asyncio
    async def test_rebuild_drops_stale_triggers(self, registry, mock_repo):
        await registry.register(99, "0 8 * * *")
        mock_repo.list_users.return_value = [make_user(chat_id=1)]
        await registry.rebuild(mock_repo)
        assert registry.active_chat_ids() == [1]
