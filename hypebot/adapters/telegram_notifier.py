"""Telegram notification adapter — implements NotificationPort.

Announcements go to the configured event channel with two inline buttons.
Telegram has no API to list who reacted to a message, so button presses are
recorded in InterestDB and read back from there.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, TelegramError
from telegram.helpers import escape_markdown

from hypebot.core.errors import TransportError
from hypebot.data.models import Event

if TYPE_CHECKING:
    from hypebot.data.db import InterestDB

logger = logging.getLogger(__name__)

INTERESTED_EMOJI = "✅"
UNINTERESTED_EMOJI = "❌"
INTEREST_CALLBACK_YES = "interest:yes"
INTEREST_CALLBACK_NO = "interest:no"


def _md(text: str) -> str:
    return escape_markdown(text, version=1)


def format_announcement(event: Event, tz: ZoneInfo, with_call_to_action: bool = True) -> str:
    """Render an event as Markdown, in the event timezone."""
    local = event.scheduled_time.astimezone(tz)
    lines = [
        f"*{_md(event.name)}*",
        f"*{local.strftime('%A, %B %d @ %I:%M %p %Z')}*",
    ]
    if event.description:
        lines.append(_md(event.description))
    lines.append("")
    if event.location:
        lines.append(f"📍 {_md(event.location)}")
    if event.organizer:
        lines.append(f"Organized by {_md(event.organizer)}")
    if with_call_to_action:
        lines.append("")
        lines.append(f"Tap {INTERESTED_EMOJI} below to receive event reminders!")
    return "\n".join(lines)


def interest_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton(f"{INTERESTED_EMOJI} Remind me", callback_data=INTEREST_CALLBACK_YES),
        InlineKeyboardButton(f"{UNINTERESTED_EMOJI} Not interested", callback_data=INTEREST_CALLBACK_NO),
    ]])


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(
        self,
        bot: Bot,
        channel_id: int,
        interests: InterestDB,
        tz: ZoneInfo,
    ) -> None:
        self._bot = bot
        self._channel_id = channel_id
        self._interests = interests
        self._tz = tz

    async def post_announcement(self, event: Event) -> str:
        text = format_announcement(event, self._tz)
        try:
            if event.thumbnail_link:
                message = await self._bot.send_photo(
                    chat_id=self._channel_id,
                    photo=event.thumbnail_link,
                    caption=text,
                    parse_mode=ParseMode.MARKDOWN,
                    reply_markup=interest_keyboard(),
                )
            else:
                message = await self._bot.send_message(
                    chat_id=self._channel_id,
                    text=text,
                    parse_mode=ParseMode.MARKDOWN,
                    reply_markup=interest_keyboard(),
                )
        except TelegramError as exc:
            logger.error("Telegram announcement error: %s", exc)
            raise TransportError(f"Failed to post announcement: {exc}") from exc

        logger.info("Announcement posted for '%s' as message %d", event.name, message.message_id)
        return str(message.message_id)

    async def delete_announcement(self, external_message_id: str) -> None:
        try:
            message_id = int(external_message_id)
        except ValueError:
            logger.warning("Not deleting malformed message id %r", external_message_id)
            return

        try:
            await self._bot.delete_message(chat_id=self._channel_id, message_id=message_id)
            logger.info("Announcement %d deleted", message_id)
        except (BadRequest, Forbidden) as exc:
            # Already deleted, too old, or no longer ours to delete
            logger.warning("Announcement %d not deleted: %s", message_id, exc)
        except TelegramError as exc:
            logger.error("Telegram delete error for %d: %s", message_id, exc)
            raise TransportError(f"Failed to delete announcement: {exc}") from exc

        self._interests.clear(external_message_id)

    async def list_interested_users(self, external_message_id: str) -> list[int]:
        return self._interests.list_users(external_message_id)

    async def send_direct_message(self, user_id: int, text: str) -> None:
        try:
            try:
                await self._bot.send_message(
                    chat_id=user_id, text=text, parse_mode=ParseMode.MARKDOWN,
                )
            except BadRequest as exc:
                # Event names are user text and may not be valid Markdown
                logger.debug("Markdown rejected for %d (%s), sending plain text", user_id, exc)
                await self._bot.send_message(chat_id=user_id, text=text.replace("*", ""))
        except TelegramError as exc:
            # Users who never opened a chat with the bot can't be messaged
            logger.warning("Direct message to %d failed: %s", user_id, exc)
