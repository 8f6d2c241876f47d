"""
Interview Question Bot — Telegram Bot.

Telegram is the only user interface. Commands are thin: they register the
caller, call into the core through the Handlers port or the repository,
and turn core errors into short replies. Scheduled questions never pass
through here; they are fired by the SchedulerRegistry started in post_init.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction, ParseMode
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)

from interview_bot.config import settings
from interview_bot.core.access_policy import USER_KEY_PROVIDER, PolicyDenied
from interview_bot.core.question_generator import CATEGORIES
from interview_bot.core.question_service import DeliveryFailure
from interview_bot.core.scheduler import SchedulingError, daily_expression, describe_expression
from interview_bot.data.models import User
from interview_bot.ports.message_port import MessageSendError
from interview_bot.ports.repository_port import StorageError

if TYPE_CHECKING:
    from interview_bot.core.access_policy import AccessPolicy
    from interview_bot.core.scheduler import SchedulerRegistry
    from interview_bot.ports.generator_port import QuestionGenerator
    from interview_bot.ports.handlers_port import Handlers
    from interview_bot.ports.message_port import MessageSender
    from interview_bot.ports.repository_port import Repository

logger = logging.getLogger(__name__)

MIN_API_KEY_LENGTH = 20
_ADMIN_ONLY_REPLY = "⛔ This command is only available to admins."
_NOT_STARTED_REPLY = "Please start the bot first with /start"

_USER_COMMANDS = [
    BotCommand("start", "Start the bot"),
    BotCommand("help", "Show help information"),
    BotCommand("question", "Get an interview question [category]"),
    BotCommand("q", "Quick shorthand for a random question"),
    BotCommand("reset", "Reset your question history"),
    BotCommand("schedule", "Change daily question time (HH:MM)"),
    BotCommand("setapikey", "Set your Gemini API key"),
    BotCommand("removeapikey", "Remove your API key"),
    BotCommand("stats", "Show your statistics"),
]


# ---------------------------------------------------------------------------
# Access helpers
# ---------------------------------------------------------------------------


def _chat_id(update: Update) -> int:
    return update.effective_chat.id


async def _register_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> User:
    """Return the caller's user row, creating it on first contact.

    Configured admin chats are created as, or promoted to, admins. Everyone
    else is approved straight away unless the approval gate is on, in which
    case the admins are told how to approve the newcomer.
    """
    repo: Repository = context.bot_data["repo"]
    policy: AccessPolicy = context.bot_data["policy"]

    chat_id = _chat_id(update)
    tg_user = update.effective_user
    name = " ".join(filter(None, [tg_user.first_name, tg_user.last_name])) or "Unknown"
    is_admin = chat_id in settings.ADMIN_CHAT_IDS
    bot_settings = await policy.current_settings()

    user, created = await repo.ensure_user(
        chat_id,
        name,
        tg_user.username,
        is_admin=is_admin,
        is_approved=not bot_settings.require_user_approval,
    )
    if created and not user.is_approved:
        await _notify_admins(
            context,
            f"🆕 New user waiting for approval:\n{name} (ID: {chat_id})\n\n"
            f"Approve with: /approve {chat_id}",
        )
    return user


async def _notify_admins(context: ContextTypes.DEFAULT_TYPE, text: str) -> None:
    repo: Repository = context.bot_data["repo"]
    sender: MessageSender = context.bot_data["sender"]
    for admin in await repo.list_admins():
        try:
            await sender.send(admin.chat_id, text, formatted=False)
        except MessageSendError as exc:
            logger.warning("Could not notify admin %d: %s", admin.chat_id, exc)


def admin_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that refuses admin commands to everyone else."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        repo: Repository = context.bot_data["repo"]
        chat_id = _chat_id(update)
        try:
            is_admin = chat_id in settings.ADMIN_CHAT_IDS or await repo.is_admin(chat_id)
        except StorageError as exc:
            logger.error("Admin check failed for chat %d: %s", chat_id, exc)
            is_admin = False
        if not is_admin:
            logger.warning("Non-admin chat %d tried %s", chat_id, func.__name__)
            await update.message.reply_text(_ADMIN_ONLY_REPLY)
            return
        return await func(update, context)

    return wrapper


def _parse_chat_id_arg(context: ContextTypes.DEFAULT_TYPE) -> int | None:
    if not context.args:
        return None
    try:
        return int(context.args[0])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# User commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register and welcome the user."""
    try:
        user = await _register_user(update, context)
    except StorageError as exc:
        logger.error("/start registration failed: %s", exc)
        await update.message.reply_text("❌ Something went wrong. Please try again later.")
        return

    message = (
        f"👋 Welcome, {update.effective_user.first_name}! "
        "I'm your Interview Questions Bot.\n\n"
    )
    if not user.is_approved and not user.is_admin:
        message += (
            "⚠️ Your account is pending approval by an administrator. "
            "You'll be notified when approved.\n\n"
        )
    await update.message.reply_text(message)
    await cmd_help(update, context)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    repo: Repository = context.bot_data["repo"]
    categories = ", ".join(CATEGORIES)
    text = (
        "Available commands:\n"
        f"/question [category] — Get a question ({categories})\n"
        "/q — Get a random question\n"
        "/schedule HH:MM — Change your daily question time\n"
        "/stats — Show your statistics\n"
        "/reset — Reset your question history\n"
        "/setapikey <key> — Use your own Gemini API key\n"
        "/removeapikey — Stop using your own API key\n"
        "/help — Show this message"
    )
    try:
        is_admin = await repo.is_admin(_chat_id(update))
    except StorageError:
        is_admin = False
    if is_admin:
        text += (
            "\n\nAdmin commands:\n"
            "/users — List all users\n"
            "/pending — List users waiting for approval\n"
            "/approve <chat_id> — Approve a user\n"
            "/deactivate <chat_id> — Stop sending to a user\n"
            "/activate <chat_id> — Resume sending to a user\n"
            "/settings — Show bot settings\n"
            "/toggleapproval — Toggle user approval requirement\n"
            "/toggleapikey — Toggle API key requirement\n"
            "/setlimit <n> — Daily on-demand question limit (0 = off)\n"
            "/stats_all — Overall statistics\n"
            "/broadcast <text> — Message every active user"
        )
    await update.message.reply_text(text)


async def _request_question(
    update: Update, context: ContextTypes.DEFAULT_TYPE, category: str | None,
) -> None:
    """Shared logic of /question and /q."""
    handlers: Handlers = context.bot_data["handlers"]
    chat_id = _chat_id(update)

    try:
        await _register_user(update, context)
    except StorageError as exc:
        logger.error("Registration failed for chat %d: %s", chat_id, exc)
        await update.message.reply_text("❌ Something went wrong. Please try again later.")
        return

    await context.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
    loading = await update.message.reply_text("Generating your question... ⏳")

    reply: str | None = None
    try:
        await handlers.on_new_question(chat_id, category)
    except PolicyDenied as exc:
        reply = f"⚠️ {exc}"
    except DeliveryFailure as exc:
        logger.error("On-demand question not delivered: %s", exc)
        reply = "❌ Sorry, there was an error sending the question or answer."
    except StorageError as exc:
        logger.error("Storage error during /question for chat %d: %s", chat_id, exc)
        reply = "❌ Sorry, there was an error generating your question. Please try again."

    try:
        await loading.delete()
    except Exception:
        pass  # Non-critical if delete fails
    if reply:
        await update.message.reply_text(reply)


async def cmd_question(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /question [category]."""
    category = context.args[0].lower().strip() if context.args else None
    if category is not None and category not in CATEGORIES:
        await update.message.reply_text(
            f"Unknown category '{category}'. Choose one of: {', '.join(CATEGORIES)}"
        )
        return
    await _request_question(update, context, category)


async def cmd_q(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /q — random category."""
    await _request_question(update, context, None)


async def cmd_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reset — ask for confirmation before deleting history."""
    try:
        user = await _register_user(update, context)
    except StorageError as exc:
        logger.error("/reset registration failed: %s", exc)
        await update.message.reply_text(_NOT_STARTED_REPLY)
        return

    keyboard = [[
        InlineKeyboardButton("Yes, reset my history", callback_data="reset:user"),
        InlineKeyboardButton("Cancel", callback_data="reset:cancel"),
    ]]
    if user.is_admin:
        keyboard.append([
            InlineKeyboardButton("⚠️ Reset ALL users' history", callback_data="reset:all"),
        ])
    await update.message.reply_text(
        "⚠️ Are you sure you want to delete your question history? This cannot be undone.",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


async def _handle_reset_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the reset confirmation buttons."""
    handlers: Handlers = context.bot_data["handlers"]
    query = update.callback_query
    await query.answer()

    action = query.data.split(":", 1)[1]
    if action == "cancel":
        await query.edit_message_text("❌ Reset cancelled.")
        return

    chat_id = query.message.chat.id
    try:
        deleted = await handlers.on_reset(chat_id, all_users=(action == "all"))
    except PolicyDenied as exc:
        await query.edit_message_text(f"⛔ {exc}")
        return
    except StorageError as exc:
        logger.error("Reset failed for chat %d: %s", chat_id, exc)
        await query.edit_message_text("❌ Failed to reset history. Please try again later.")
        return

    if action == "all":
        await query.edit_message_text(
            f"✅ All question history has been reset. Deleted {deleted} questions from all users."
        )
    else:
        await query.edit_message_text(
            f"✅ Your question history has been reset. Deleted {deleted} questions."
        )


async def cmd_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule [HH:MM]."""
    handlers: Handlers = context.bot_data["handlers"]
    try:
        user = await _register_user(update, context)
    except StorageError as exc:
        logger.error("/schedule registration failed: %s", exc)
        await update.message.reply_text(_NOT_STARTED_REPLY)
        return

    if not context.args:
        readable = describe_expression(user.schedule_expr) or "Unknown time"
        await update.message.reply_text(
            "ℹ️ Please provide a time in 24-hour format.\n"
            "Example: /schedule 08:30 for 8:30 AM\n\n"
            f"Your current schedule: {readable} (daily)\n"
            f"Cron expression: {user.schedule_expr}"
        )
        return

    try:
        hour_text, minute_text = context.args[0].split(":")
        expr = daily_expression(int(hour_text), int(minute_text))
        await handlers.on_schedule(user.chat_id, expr)
    except (ValueError, SchedulingError):
        await update.message.reply_text(
            "❌ Invalid time format. Please use HH:MM in 24-hour format (00-23:00-59)."
        )
        return
    except (PolicyDenied, StorageError) as exc:
        logger.error("Schedule update failed for chat %d: %s", user.chat_id, exc)
        await update.message.reply_text("❌ Failed to update schedule. Please try again later.")
        return

    await update.message.reply_text(
        "✅ Your schedule updated successfully!\n"
        f"Daily questions will now be sent at {describe_expression(expr)} ({settings.TIMEZONE})."
    )


async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — the caller's own statistics."""
    repo: Repository = context.bot_data["repo"]
    try:
        user = await _register_user(update, context)
        total, by_category = await repo.question_stats(user.id)
    except StorageError as exc:
        logger.error("/stats failed: %s", exc)
        await update.message.reply_text(
            "❌ Failed to retrieve your statistics. Please try again later."
        )
        return

    await update.message.reply_text(
        "📊 *Your Question Statistics*\n\n"
        f"Total questions received: {total}\n"
        f"Categories:{_format_categories(by_category)}\n\n"
        f"Last question: {user.last_question_at or 'Never'}\n"
        f"Daily questions scheduled for: {describe_expression(user.schedule_expr) or f'`{user.schedule_expr}`'}",
        parse_mode=ParseMode.MARKDOWN,
    )


def _format_categories(by_category: dict[str, int]) -> str:
    if not by_category:
        return "\n- None yet"
    return "".join(
        f"\n- {category.capitalize()}: {count}" for category, count in by_category.items()
    )


async def cmd_setapikey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setapikey <key>."""
    repo: Repository = context.bot_data["repo"]
    if settings.LLM_PROVIDER.lower() != USER_KEY_PROVIDER:
        await update.message.reply_text(
            "Personal API keys are only supported when the bot runs on Google Gemini."
        )
        return

    if not context.args:
        await update.message.reply_text(
            "To set your Google Gemini API key, use the command:\n"
            "/setapikey YOUR_API_KEY\n\n"
            "You can get an API key from https://aistudio.google.com/app/apikey"
        )
        return

    api_key = context.args[0].strip()
    if not api_key.startswith("AI") or len(api_key) < MIN_API_KEY_LENGTH:
        await update.message.reply_text(
            "❌ Invalid API key format. Gemini API keys typically start with 'AI' "
            f"and are at least {MIN_API_KEY_LENGTH} characters long."
        )
        return

    try:
        user = await _register_user(update, context)
        await repo.set_api_key(user.chat_id, api_key)
    except StorageError as exc:
        logger.error("/setapikey failed: %s", exc)
        await update.message.reply_text(
            "Sorry, I encountered an error while saving your API key. Please try again later."
        )
        return
    await update.message.reply_text("✅ Your API key has been saved.")


async def cmd_removeapikey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /removeapikey."""
    repo: Repository = context.bot_data["repo"]
    try:
        user = await _register_user(update, context)
        await repo.set_api_key(user.chat_id, None)
    except StorageError as exc:
        logger.error("/removeapikey failed: %s", exc)
        await update.message.reply_text("❌ Failed to remove your API key. Please try again later.")
        return
    await update.message.reply_text("✅ Your API key has been removed.")


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------


@admin_only
async def cmd_users(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /users — list every user."""
    repo: Repository = context.bot_data["repo"]
    try:
        users = await repo.list_users(active_only=False)
    except StorageError as exc:
        logger.error("/users failed: %s", exc)
        await update.message.reply_text("❌ Failed to retrieve user list. Please try again later.")
        return

    if not users:
        await update.message.reply_text("No users found in the database.")
        return

    lines = [f"👥 User List ({len(users)} total)\n"]
    for user in users:
        crown = "👑 " if user.is_admin else ""
        username = f" @{user.username}" if user.username else ""
        status = "Active" if user.is_active else "Inactive"
        if not user.is_approved:
            status += ", pending approval"
        schedule = describe_expression(user.schedule_expr) or user.schedule_expr
        lines.append(
            f"{crown}{user.display_name}{username}\n"
            f"ID: {user.chat_id}\nStatus: {status}\nSchedule: {schedule}\n"
        )
    await update.message.reply_text("\n".join(lines))


@admin_only
async def cmd_pending(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pending — list users waiting for approval."""
    repo: Repository = context.bot_data["repo"]
    try:
        pending = await repo.list_pending_users()
    except StorageError as exc:
        logger.error("/pending failed: %s", exc)
        await update.message.reply_text("❌ Failed to list pending users. Please try again later.")
        return
    if not pending:
        await update.message.reply_text("No pending users.")
        return
    lines = ["Pending users:"]
    lines.extend(f"ID: {user.chat_id}, Name: {user.display_name}" for user in pending)
    await update.message.reply_text("\n".join(lines))


@admin_only
async def cmd_approve(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /approve <chat_id>."""
    repo: Repository = context.bot_data["repo"]
    sender: MessageSender = context.bot_data["sender"]

    target = _parse_chat_id_arg(context)
    if target is None:
        await update.message.reply_text("Usage: /approve <chat_id>")
        return

    try:
        approved = await repo.approve_user(target)
    except StorageError as exc:
        logger.error("/approve failed: %s", exc)
        await update.message.reply_text("❌ Failed to approve user. Please try again later.")
        return
    if not approved:
        await update.message.reply_text(f"No user with ID {target}.")
        return

    await update.message.reply_text(f"User {target} has been approved.")
    try:
        await sender.send(target, "Your account has been approved! You can now use the bot.", formatted=False)
    except MessageSendError as exc:
        logger.warning("Could not notify user %d about approval: %s", target, exc)


async def _set_active(update: Update, context: ContextTypes.DEFAULT_TYPE, active: bool) -> None:
    handlers: Handlers = context.bot_data["handlers"]
    target = _parse_chat_id_arg(context)
    command = "activate" if active else "deactivate"
    if target is None:
        await update.message.reply_text(f"Usage: /{command} <chat_id>")
        return
    try:
        changed = await handlers.on_set_active(target, active)
    except StorageError as exc:
        logger.error("/%s failed: %s", command, exc)
        await update.message.reply_text(f"❌ Failed to {command} user. Please try again later.")
        return
    if not changed:
        await update.message.reply_text(f"No user with ID {target}.")
        return
    await update.message.reply_text(f"User {target} is now {'active' if active else 'inactive'}.")


@admin_only
async def cmd_deactivate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deactivate <chat_id> — stop scheduled questions for a user."""
    await _set_active(update, context, False)


@admin_only
async def cmd_activate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /activate <chat_id>."""
    await _set_active(update, context, True)


@admin_only
async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /settings — show the gate and limit settings."""
    policy: AccessPolicy = context.bot_data["policy"]
    current = await policy.current_settings()
    limit = current.max_questions_per_day
    await update.message.reply_text(
        "Bot settings:\n\n"
        f"Require user approval: {'ON' if current.require_user_approval else 'OFF'}\n"
        f"Require API key: {'ON' if current.require_api_key else 'OFF'}\n"
        f"Daily question limit: {limit if limit > 0 else 'OFF'}\n\n"
        "Commands:\n"
        "/toggleapproval - Toggle user approval requirement\n"
        "/toggleapikey - Toggle API key requirement\n"
        "/setlimit <n> - Set the daily limit (0 = off)"
    )


async def _toggle(update: Update, context: ContextTypes.DEFAULT_TYPE, key: str, label: str) -> None:
    repo: Repository = context.bot_data["repo"]
    try:
        current = await repo.get_setting(key, 0)
        new_value = 0 if current else 1
        await repo.update_setting(key, new_value)
    except StorageError as exc:
        logger.error("Toggling %s failed: %s", key, exc)
        await update.message.reply_text("❌ Failed to update settings. Please try again later.")
        return
    await update.message.reply_text(f"{label} is now {'ON' if new_value else 'OFF'}.")


@admin_only
async def cmd_toggleapproval(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /toggleapproval."""
    await _toggle(update, context, "require_user_approval", "User approval requirement")


@admin_only
async def cmd_toggleapikey(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /toggleapikey."""
    await _toggle(update, context, "require_api_key", "API key requirement")


@admin_only
async def cmd_setlimit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setlimit <n>."""
    repo: Repository = context.bot_data["repo"]
    try:
        limit = int(context.args[0]) if context.args else -1
    except ValueError:
        limit = -1
    if limit < 0:
        await update.message.reply_text("Usage: /setlimit <n> (0 disables the limit)")
        return
    try:
        await repo.update_setting("max_questions_per_day", limit)
    except StorageError as exc:
        logger.error("/setlimit failed: %s", exc)
        await update.message.reply_text("❌ Failed to update settings. Please try again later.")
        return
    await update.message.reply_text(
        f"Daily question limit is now {limit}." if limit else "Daily question limit is now OFF."
    )


@admin_only
async def cmd_stats_all(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats_all — statistics across every user."""
    repo: Repository = context.bot_data["repo"]
    try:
        users = await repo.list_users(active_only=False)
        total, by_category = await repo.question_stats(None)
    except StorageError as exc:
        logger.error("/stats_all failed: %s", exc)
        await update.message.reply_text("❌ Failed to retrieve statistics. Please try again later.")
        return

    active = sum(1 for user in users if user.is_active)
    await update.message.reply_text(
        "📊 *Overall Bot Statistics*\n\n"
        f"Total users: {len(users)}\n"
        f"Active users: {active}\n\n"
        f"Total questions sent: {total}\n"
        f"Categories:{_format_categories(by_category)}",
        parse_mode=ParseMode.MARKDOWN,
    )


@admin_only
async def cmd_broadcast(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /broadcast <text> — confirm, then message every active user."""
    text = " ".join(context.args).strip() if context.args else ""
    if not text:
        await update.message.reply_text("Please provide a message to broadcast: /broadcast Your message here")
        return

    context.user_data["pending_broadcast"] = text
    keyboard = InlineKeyboardMarkup([[
        InlineKeyboardButton("Yes, send broadcast", callback_data="broadcast:confirm"),
        InlineKeyboardButton("Cancel", callback_data="broadcast:cancel"),
    ]])
    await update.message.reply_text(
        f"Are you sure you want to send this broadcast?\n\nMessage:\n{text}",
        reply_markup=keyboard,
    )


async def _handle_broadcast_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the broadcast confirmation buttons."""
    repo: Repository = context.bot_data["repo"]
    sender: MessageSender = context.bot_data["sender"]
    query = update.callback_query
    await query.answer()

    text = context.user_data.pop("pending_broadcast", None)
    if query.data != "broadcast:confirm" or not text:
        await query.edit_message_text("❌ Broadcast cancelled.")
        return

    try:
        users = await repo.list_users(active_only=True)
    except StorageError as exc:
        logger.error("Broadcast failed to list users: %s", exc)
        await query.edit_message_text("❌ Broadcast failed. Please try again later.")
        return
    sent = failed = 0
    for user in users:
        try:
            await sender.send(user.chat_id, f"📢 Broadcast from Admin\n\n{text}", formatted=False)
            sent += 1
        except MessageSendError as exc:
            logger.warning("Broadcast to chat %d failed: %s", user.chat_id, exc)
            failed += 1

    logger.info("Broadcast finished: %d sent, %d failed", sent, failed)
    await query.edit_message_text(
        f"✅ Broadcast complete!\n\nSuccessfully sent to: {sent} users\nFailed: {failed} users"
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    """Start the scheduler and replay every stored schedule."""
    scheduler: AsyncIOScheduler = app.bot_data["scheduler"]
    registry: SchedulerRegistry = app.bot_data["registry"]
    repo: Repository = app.bot_data["repo"]

    scheduler.start()
    count = await registry.rebuild(repo)
    logger.info("Scheduler started with %d trigger(s)", count)
    await app.bot.set_my_commands(_USER_COMMANDS)


async def _post_shutdown(app: Application) -> None:
    scheduler: AsyncIOScheduler = app.bot_data["scheduler"]
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    repo: Repository | None = None,
    generator: QuestionGenerator | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        repo: Repository implementation. Defaults to QuestionDB at DATABASE_PATH.
        generator: QuestionGenerator implementation. Defaults to the LLM-backed one.
    """
    from interview_bot.adapters.telegram_sender import TelegramSender
    from interview_bot.core.access_policy import AccessPolicy
    from interview_bot.core.delivery import DeliveryPipeline
    from interview_bot.core.handlers import QuestionBotHandlers
    from interview_bot.core.question_service import QuestionService
    from interview_bot.core.scheduler import SchedulerRegistry
    from interview_bot.core.uniqueness import UniquenessFilter

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if repo is None:
        from interview_bot.data.db import QuestionDB
        repo = QuestionDB(settings.DATABASE_PATH, default_schedule=settings.DEFAULT_SCHEDULE)

    if generator is None:
        from interview_bot.core.question_generator import LLMQuestionGenerator
        generator = LLMQuestionGenerator()

    sender = TelegramSender(app.bot)
    policy = AccessPolicy(repo, settings.LLM_API_KEY, provider=settings.LLM_PROVIDER)
    uniqueness = UniquenessFilter(repo, generator, language=settings.QUESTION_LANGUAGE)
    service = QuestionService(
        repo, policy, uniqueness, DeliveryPipeline(sender), sender, timezone=settings.TIMEZONE,
    )
    scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)
    registry = SchedulerRegistry(scheduler, service.send_scheduled, timezone=settings.TIMEZONE)

    # Store collaborators in bot_data for handler access
    app.bot_data["repo"] = repo
    app.bot_data["policy"] = policy
    app.bot_data["sender"] = sender
    app.bot_data["scheduler"] = scheduler
    app.bot_data["registry"] = registry
    app.bot_data["handlers"] = QuestionBotHandlers(service, registry, repo)

    # User commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("question", cmd_question))
    app.add_handler(CommandHandler("q", cmd_q))
    app.add_handler(CommandHandler("reset", cmd_reset))
    app.add_handler(CommandHandler("schedule", cmd_schedule))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(CommandHandler("setapikey", cmd_setapikey))
    app.add_handler(CommandHandler("removeapikey", cmd_removeapikey))

    # Admin commands
    app.add_handler(CommandHandler("users", cmd_users))
    app.add_handler(CommandHandler("pending", cmd_pending))
    app.add_handler(CommandHandler("approve", cmd_approve))
    app.add_handler(CommandHandler("deactivate", cmd_deactivate))
    app.add_handler(CommandHandler("activate", cmd_activate))
    app.add_handler(CommandHandler("settings", cmd_settings))
    app.add_handler(CommandHandler("toggleapproval", cmd_toggleapproval))
    app.add_handler(CommandHandler("toggleapikey", cmd_toggleapikey))
    app.add_handler(CommandHandler("setlimit", cmd_setlimit))
    app.add_handler(CommandHandler("stats_all", cmd_stats_all))
    app.add_handler(CommandHandler("broadcast", cmd_broadcast))

    # Confirmation buttons
    app.add_handler(CallbackQueryHandler(_handle_reset_callback, pattern=r"^reset:(user|all|cancel)$"))
    app.add_handler(CallbackQueryHandler(_handle_broadcast_callback, pattern=r"^broadcast:"))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Interview Question Bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
