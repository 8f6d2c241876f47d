"""Tests for interview_bot.bot.telegram_bot — Telegram command handlers.

Tests the command flow, admin gating and error replies. All collaborators
(repository, handlers, sender) are mocked; no Telegram API calls.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from interview_bot.bot.telegram_bot import (
    _ADMIN_ONLY_REPLY,
    _register_user,
    cmd_approve,
    cmd_deactivate,
    cmd_pending,
    cmd_q,
    cmd_question,
    cmd_schedule,
    cmd_setapikey,
    cmd_setlimit,
    cmd_stats,
    cmd_toggleapproval,
    cmd_users,
    _handle_broadcast_callback,
    _handle_reset_callback,
)
from interview_bot.config import settings
from interview_bot.core.access_policy import AccessPolicy, DenialReason, PolicyDenied
from interview_bot.core.question_service import DeliveryFailure
from interview_bot.data.models import BotSettings
from interview_bot.ports.repository_port import StorageError
from tests.factories import make_user


def _make_update(text="", chat_id=100, first_name="Dana"):
    """Create a mock Update with a text message from chat_id."""
    update = MagicMock()
    update.message.text = text
    update.effective_chat.id = chat_id
    update.effective_user.id = chat_id
    update.effective_user.first_name = first_name
    update.effective_user.last_name = None
    update.effective_user.username = "dana"
    update.message.reply_text = AsyncMock()
    return update


def _make_context(repo, args=None, handlers=None, sender=None):
    """Create a mock context with args and bot_data wired to mocks."""
    context = MagicMock()
    context.args = args or []
    context.user_data = {}
    context.bot.send_chat_action = AsyncMock()
    context.bot_data = {
        "repo": repo,
        "policy": AccessPolicy(repo, operator_api_key="operator"),
        "handlers": handlers or AsyncMock(),
        "sender": sender or AsyncMock(),
    }
    return context


def _last_reply(update) -> str:
    return update.message.reply_text.call_args.args[0]


@pytest.fixture
def repo(mock_repo):
    mock_repo.ensure_user.return_value = (make_user(), False)
    mock_repo.is_admin.return_value = False
    return mock_repo


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegisterUser:
    @pytest.mark.asyncio
    async def test_configured_admin_created_as_admin(self, repo):
        repo.ensure_user.return_value = (make_user(chat_id=999, is_admin=True), True)
        update = _make_update(chat_id=999)
        await _register_user(update, _make_context(repo))
        assert repo.ensure_user.call_args.kwargs["is_admin"] is True

    @pytest.mark.asyncio
    async def test_auto_approved_when_gate_off(self, repo):
        await _register_user(_make_update(), _make_context(repo))
        assert repo.ensure_user.call_args.kwargs["is_approved"] is True
        assert repo.ensure_user.call_args.kwargs["is_admin"] is False

    @pytest.mark.asyncio
    async def test_new_pending_user_notifies_admins(self, repo):
        repo.get_settings.return_value = BotSettings(require_user_approval=True)
        repo.ensure_user.return_value = (make_user(is_approved=False), True)
        repo.list_admins.return_value = [make_user(id=9, chat_id=999, is_admin=True)]
        sender = AsyncMock()

        await _register_user(_make_update(), _make_context(repo, sender=sender))

        assert repo.ensure_user.call_args.kwargs["is_approved"] is False
        chat_id, text = sender.send.call_args.args
        assert chat_id == 999
        assert "/approve 100" in text

    @pytest.mark.asyncio
    async def test_existing_user_does_not_notify(self, repo):
        repo.ensure_user.return_value = (make_user(is_approved=False), False)
        sender = AsyncMock()
        await _register_user(_make_update(), _make_context(repo, sender=sender))
        sender.send.assert_not_called()


# ---------------------------------------------------------------------------
# /question and /q
# ---------------------------------------------------------------------------


class TestQuestionCommands:
    @pytest.mark.asyncio
    async def test_question_with_category(self, repo):
        handlers = AsyncMock()
        update = _make_update("/question react")
        await cmd_question(update, _make_context(repo, ["React"], handlers=handlers))
        handlers.on_new_question.assert_awaited_once_with(100, "react")

    @pytest.mark.asyncio
    async def test_unknown_category_rejected(self, repo):
        handlers = AsyncMock()
        update = _make_update("/question cobol")
        await cmd_question(update, _make_context(repo, ["cobol"], handlers=handlers))
        handlers.on_new_question.assert_not_called()
        assert "Unknown category" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_q_uses_random_category(self, repo):
        handlers = AsyncMock()
        await cmd_q(_make_update("/q"), _make_context(repo, handlers=handlers))
        handlers.on_new_question.assert_awaited_once_with(100, None)

    @pytest.mark.asyncio
    async def test_policy_denial_is_relayed(self, repo):
        handlers = AsyncMock()
        handlers.on_new_question.side_effect = PolicyDenied(
            DenialReason.API_KEY_REQUIRED, "Use /setapikey to set your key.",
        )
        update = _make_update("/q")
        await cmd_q(update, _make_context(repo, handlers=handlers))
        assert "/setapikey" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_delivery_failure_reply(self, repo):
        handlers = AsyncMock()
        handlers.on_new_question.side_effect = DeliveryFailure("nope")
        update = _make_update("/q")
        await cmd_q(update, _make_context(repo, handlers=handlers))
        assert "error sending" in _last_reply(update)


# ---------------------------------------------------------------------------
# /schedule
# ---------------------------------------------------------------------------


class TestScheduleCommand:
    @pytest.mark.asyncio
    async def test_valid_time(self, repo):
        handlers = AsyncMock()
        update = _make_update("/schedule 08:30")
        await cmd_schedule(update, _make_context(repo, ["08:30"], handlers=handlers))
        handlers.on_schedule.assert_awaited_once_with(100, "30 8 * * *")
        assert "08:30" in _last_reply(update)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("arg", ["25:00", "8", "ab:cd", "08:61"])
    async def test_invalid_time(self, repo, arg):
        handlers = AsyncMock()
        update = _make_update(f"/schedule {arg}")
        await cmd_schedule(update, _make_context(repo, [arg], handlers=handlers))
        handlers.on_schedule.assert_not_called()
        assert "Invalid time format" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_no_argument_shows_current(self, repo):
        update = _make_update("/schedule")
        await cmd_schedule(update, _make_context(repo))
        assert "09:00" in _last_reply(update)


# ---------------------------------------------------------------------------
# /stats, /setapikey
# ---------------------------------------------------------------------------


class TestUserCommands:
    @pytest.mark.asyncio
    async def test_stats(self, repo):
        repo.question_stats.return_value = (3, {"javascript": 2, "react": 1})
        update = _make_update("/stats")
        await cmd_stats(update, _make_context(repo))
        reply = _last_reply(update)
        assert "Total questions received: 3" in reply
        assert "- Javascript: 2" in reply
        repo.question_stats.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_setapikey_rejects_bad_format(self, repo):
        update = _make_update("/setapikey nope")
        await cmd_setapikey(update, _make_context(repo, ["nope"]))
        repo.set_api_key.assert_not_called()
        assert "Invalid API key format" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_setapikey_stores_valid_key(self, repo):
        key = "AIza" + "x" * 30
        update = _make_update(f"/setapikey {key}")
        await cmd_setapikey(update, _make_context(repo, [key]))
        repo.set_api_key.assert_awaited_once_with(100, key)

    @pytest.mark.asyncio
    async def test_setapikey_refused_for_other_providers(self, repo):
        key = "AIza" + "x" * 30
        update = _make_update(f"/setapikey {key}")
        with patch.object(settings, "LLM_PROVIDER", "anthropic"):
            await cmd_setapikey(update, _make_context(repo, [key]))
        repo.set_api_key.assert_not_called()
        assert "only supported" in _last_reply(update)


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------


class TestAdminCommands:
    @pytest.mark.asyncio
    async def test_non_admin_is_refused(self, repo):
        update = _make_update("/users")
        await cmd_users(update, _make_context(repo))
        assert _last_reply(update) == _ADMIN_ONLY_REPLY
        repo.list_users.assert_not_called()

    @pytest.mark.asyncio
    async def test_configured_admin_passes_without_admin_row(self, repo):
        repo.list_users.return_value = []
        update = _make_update("/users", chat_id=999)
        await cmd_users(update, _make_context(repo))
        repo.list_users.assert_awaited_once_with(active_only=False)
        assert _last_reply(update) != _ADMIN_ONLY_REPLY

    @pytest.mark.asyncio
    async def test_users_lists_everyone(self, repo):
        repo.is_admin.return_value = True
        repo.list_users.return_value = [make_user(chat_id=5, display_name="Ada")]
        update = _make_update("/users")
        await cmd_users(update, _make_context(repo))
        repo.list_users.assert_awaited_once_with(active_only=False)
        assert "Ada" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_approve_notifies_user(self, repo):
        repo.is_admin.return_value = True
        repo.approve_user.return_value = True
        sender = AsyncMock()
        update = _make_update("/approve 5")
        await cmd_approve(update, _make_context(repo, ["5"], sender=sender))
        repo.approve_user.assert_awaited_once_with(5)
        assert sender.send.call_args.args[0] == 5

    @pytest.mark.asyncio
    async def test_approve_storage_error_is_reported(self, repo):
        repo.is_admin.return_value = True
        repo.approve_user.side_effect = StorageError("locked")
        sender = AsyncMock()
        update = _make_update("/approve 5")
        await cmd_approve(update, _make_context(repo, ["5"], sender=sender))
        assert "Failed to approve" in _last_reply(update)
        sender.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_storage_error_is_reported(self, repo):
        repo.is_admin.return_value = True
        repo.list_pending_users.side_effect = StorageError("locked")
        update = _make_update("/pending")
        await cmd_pending(update, _make_context(repo))
        assert "Failed to list pending users" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_approve_requires_numeric_id(self, repo):
        repo.is_admin.return_value = True
        update = _make_update("/approve bob")
        await cmd_approve(update, _make_context(repo, ["bob"]))
        repo.approve_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_toggle_approval(self, repo):
        repo.is_admin.return_value = True
        repo.get_setting.return_value = 0
        update = _make_update("/toggleapproval")
        await cmd_toggleapproval(update, _make_context(repo))
        repo.update_setting.assert_awaited_once_with("require_user_approval", 1)
        assert "ON" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_setlimit(self, repo):
        repo.is_admin.return_value = True
        await cmd_setlimit(_make_update("/setlimit 3"), _make_context(repo, ["3"]))
        repo.update_setting.assert_awaited_once_with("max_questions_per_day", 3)

    @pytest.mark.asyncio
    async def test_setlimit_rejects_negative(self, repo):
        repo.is_admin.return_value = True
        await cmd_setlimit(_make_update("/setlimit -1"), _make_context(repo, ["-1"]))
        repo.update_setting.assert_not_called()

    @pytest.mark.asyncio
    async def test_deactivate(self, repo):
        repo.is_admin.return_value = True
        handlers = AsyncMock()
        handlers.on_set_active.return_value = True
        update = _make_update("/deactivate 5")
        await cmd_deactivate(update, _make_context(repo, ["5"], handlers=handlers))
        handlers.on_set_active.assert_awaited_once_with(5, False)
        assert "inactive" in _last_reply(update)


# ---------------------------------------------------------------------------
# Confirmation callbacks
# ---------------------------------------------------------------------------


def _make_callback(data, chat_id=100):
    update = MagicMock()
    update.callback_query.data = data
    update.callback_query.message.chat.id = chat_id
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()
    return update


class TestCallbacks:
    @pytest.mark.asyncio
    async def test_reset_user(self, repo):
        handlers = AsyncMock()
        handlers.on_reset.return_value = 3
        update = _make_callback("reset:user")
        await _handle_reset_callback(update, _make_context(repo, handlers=handlers))
        handlers.on_reset.assert_awaited_once_with(100, all_users=False)
        assert "Deleted 3" in update.callback_query.edit_message_text.call_args.args[0]

    @pytest.mark.asyncio
    async def test_reset_cancel(self, repo):
        handlers = AsyncMock()
        update = _make_callback("reset:cancel")
        await _handle_reset_callback(update, _make_context(repo, handlers=handlers))
        handlers.on_reset.assert_not_called()

    @pytest.mark.asyncio
    async def test_broadcast_confirm_sends_to_active_users(self, repo):
        repo.list_users.return_value = [make_user(chat_id=1), make_user(chat_id=2)]
        sender = AsyncMock()
        context = _make_context(repo, sender=sender)
        context.user_data["pending_broadcast"] = "Hello all"

        update = _make_callback("broadcast:confirm")
        await _handle_broadcast_callback(update, context)

        assert [c.args[0] for c in sender.send.await_args_list] == [1, 2]
        assert "Successfully sent to: 2" in update.callback_query.edit_message_text.call_args.args[0]
        assert "pending_broadcast" not in context.user_data

    @pytest.mark.asyncio
    async def test_broadcast_storage_error_is_reported(self, repo):
        repo.list_users.side_effect = StorageError("locked")
        sender = AsyncMock()
        context = _make_context(repo, sender=sender)
        context.user_data["pending_broadcast"] = "Hello all"

        update = _make_callback("broadcast:confirm")
        await _handle_broadcast_callback(update, context)

        sender.send.assert_not_called()
        assert "Broadcast failed" in update.callback_query.edit_message_text.call_args.args[0]

    @pytest.mark.asyncio
    async def test_broadcast_cancel(self, repo):
        sender = AsyncMock()
        context = _make_context(repo, sender=sender)
        context.user_data["pending_broadcast"] = "Hello all"
        await _handle_broadcast_callback(_make_callback("broadcast:cancel"), context)
        sender.send.assert_not_called()
