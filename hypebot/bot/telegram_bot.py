"""
HypeBot — Telegram Bot.

Telegram is the only user interface. Organizers draft, confirm and cancel
events with commands; everyone in the event channel signs up for reminders
with the buttons under each announcement.

Security-first: commands from users outside ALLOWED_USER_IDS are silently
ignored.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)

from hypebot.adapters.telegram_notifier import (
    INTEREST_CALLBACK_YES,
    format_announcement,
)
from hypebot.config import settings
from hypebot.core.event_service import (
    DraftPreviewResponse,
    EventListResponse,
    ResponseKind,
)
from hypebot.core.errors import HypeBotError

if TYPE_CHECKING:
    from hypebot.core.event_service import EventService
    from hypebot.core.sweep import SweepLoop
    from hypebot.ports.event_store import EventStore
    from hypebot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores commands from users without the event role.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


def _command_args(text: str | None) -> str:
    """Everything after the command word, quotes intact."""
    if not text:
        return ""
    parts = text.split(maxsplit=1)
    return parts[1] if len(parts) > 1 else ""


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *HypeBot*: hype up your events!\n\n"
        "• Use /create to draft an event and preview its announcement\n"
        "• Use /confirm to post your draft to the event channel\n"
        "• Use /cancel to call off a posted event\n\n"
        "Type /help for the full command list.",
        parse_mode=ParseMode.MARKDOWN,
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        '/create "name" "04:20pm 2069-04-20" "description" "location" '
        '["thumbnail link"] ["organizer"] — Draft an event\n'
        "/confirm — Post your pending draft\n"
        '/cancel "name" — Cancel a posted event\n'
        "/events — List upcoming events\n"
        "/help — Show this message\n\n"
        "Only one draft can be pending per chat; a new /create replaces it.",
        parse_mode=ParseMode.MARKDOWN,
    )


@authorized_only
async def cmd_create(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /create — fill this chat's draft and show a preview."""
    service: EventService = context.bot_data["service"]
    tz: ZoneInfo = context.bot_data["tz"]
    user = update.effective_user

    response = service.create_draft(
        context_key=update.effective_chat.id,
        creator_id=user.id,
        creator_name=user.full_name,
        text=_command_args(update.message.text),
    )
    if not isinstance(response, DraftPreviewResponse):
        await update.message.reply_text(response.message)
        return

    await update.message.reply_text(response.message)
    await update.message.reply_text(
        format_announcement(response.event, tz, with_call_to_action=False),
        parse_mode=ParseMode.MARKDOWN,
    )


@authorized_only
async def cmd_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /confirm — post the requester's draft."""
    service: EventService = context.bot_data["service"]

    response = await service.confirm_draft(
        context_key=update.effective_chat.id,
        requester_id=update.effective_user.id,
    )
    await update.message.reply_text(response.message)


@authorized_only
async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancel "name" — cancel a posted event."""
    service: EventService = context.bot_data["service"]

    response = await service.cancel_event(_command_args(update.message.text))
    if response.kind is ResponseKind.SUCCESS and response.event is not None:
        name = escape_markdown(response.event.name, version=1)
        await update.message.reply_text(
            f"*{name}* has been canceled!", parse_mode=ParseMode.MARKDOWN,
        )
    else:
        await update.message.reply_text(response.message)


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /events — list every stored event."""
    service: EventService = context.bot_data["service"]
    tz: ZoneInfo = context.bot_data["tz"]

    response = service.list_upcoming()
    if not isinstance(response, EventListResponse) or not response.events:
        await update.message.reply_text(response.message)
        return

    lines = [response.message]
    for ev in response.events:
        when = ev.scheduled_time.astimezone(tz).strftime("%a %b %d, %I:%M %p")
        status = "reminded" if ev.reminder_sent else "pending"
        lines.append(f"• {when} — {ev.name} ({status})")
    await update.message.reply_text("\n".join(lines))


async def _handle_interest_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE,
) -> None:
    """Handle the ✅ / ❌ buttons under an announcement. Open to everyone."""
    service: EventService = context.bot_data["service"]
    query = update.callback_query

    if query.message is None or query.from_user is None:
        await query.answer()
        return

    try:
        response = await service.register_interest(
            external_message_id=str(query.message.message_id),
            user_id=query.from_user.id,
            interested=query.data == INTEREST_CALLBACK_YES,
        )
        await query.answer(response.message)
    except HypeBotError as exc:
        logger.error("Interest callback error: %s", exc)
        await query.answer("Something went wrong. Please try again.")


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: EventStore | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Event store implementation. Defaults to EventDB.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    from hypebot.core.drafts import DraftBook
    from hypebot.core.event_service import EventService
    from hypebot.core.precision_scheduler import PrecisionScheduler
    from hypebot.core.reminders import ReminderStateMachine
    from hypebot.core.sweep import SweepLoop
    from hypebot.data.db import EventDB, InterestDB

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_start_scheduler)
        .post_shutdown(_stop_scheduler)
        .build()
    )
    tz = ZoneInfo(settings.EVENT_TIMEZONE)

    # Wire default adapters if not provided
    interests = InterestDB()
    if store is None:
        store = EventDB()

    if notifier is None:
        from hypebot.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot, settings.EVENT_CHANNEL_ID, interests, tz)

    machine = ReminderStateMachine(
        store,
        notifier,
        lead=timedelta(minutes=settings.REMINDER_LEAD_MINUTES),
        window=timedelta(minutes=settings.RETIREMENT_WINDOW_MINUTES),
    )
    scheduler = PrecisionScheduler(workers=settings.SCHEDULER_WORKERS)
    service = EventService(
        store=store,
        notifier=notifier,
        interests=interests,
        drafts=DraftBook(),
        machine=machine,
        scheduler=scheduler,
        tz=tz,
        default_thumbnail=settings.DEFAULT_THUMBNAIL_LINK,
    )

    # Store shared objects in bot_data for handler access
    app.bot_data["service"] = service
    app.bot_data["scheduler"] = scheduler
    app.bot_data["tz"] = tz

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("create", cmd_create))
    app.add_handler(CommandHandler("confirm", cmd_confirm))
    app.add_handler(CommandHandler("cancel", cmd_cancel))
    app.add_handler(CommandHandler("events", cmd_events))
    app.add_handler(CallbackQueryHandler(_handle_interest_callback, pattern=r"^interest:(yes|no)$"))

    # Sweep — the durable fallback for the in-memory precision scheduler
    _setup_sweep(app, SweepLoop(store, machine))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


async def _start_scheduler(app: Application) -> None:
    """Rebuild timer tasks from the store, then start dispatching them."""
    service: EventService = app.bot_data["service"]
    try:
        service.reschedule_all()
    except HypeBotError as exc:
        logger.error("Could not reschedule stored events, relying on the sweep: %s", exc)
    await app.bot_data["scheduler"].start()


async def _stop_scheduler(app: Application) -> None:
    await app.bot_data["scheduler"].stop()


def _setup_sweep(app: Application, sweep: SweepLoop) -> None:
    """Register the fixed-interval sweep job."""

    async def _sweep_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await sweep.tick()

    app.job_queue.run_repeating(
        _sweep_job_callback,
        interval=settings.SWEEP_INTERVAL_SECONDS,
        first=settings.SWEEP_INTERVAL_SECONDS,
        name="event_sweep",
    )

    logger.info("Event sweep scheduled every %d seconds", settings.SWEEP_INTERVAL_SECONDS)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting HypeBot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
