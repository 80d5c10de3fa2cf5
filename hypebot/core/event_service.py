"""
HypeBot — UI-Agnostic Event Service.

Orchestrates the command flows: create a draft -> confirm it (announce,
store, schedule the reminder) -> cancel it, plus interest sign-ups from the
announcement buttons. Returns structured response objects; the Telegram
handlers only render them.

Command errors (not found, wrong user, bad input) come back as
ErrorResponse messages. Transport and store failures are logged and
reported as a generic "try again later".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING

from hypebot.core.errors import (
    AuthorizationError,
    NotFoundError,
    StoreError,
    TransportError,
    ValidationError,
)
from hypebot.core.parser import parse_command_args, parse_create_args, sanitize
from hypebot.core.reminders import cancel_text
from hypebot.data.models import DraftEvent, Event

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from hypebot.core.drafts import DraftBook
    from hypebot.core.precision_scheduler import PrecisionScheduler
    from hypebot.core.reminders import ReminderStateMachine
    from hypebot.data.db import InterestDB
    from hypebot.ports.event_store import EventStore
    from hypebot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_TRY_AGAIN = "Something went wrong talking to the chat server. Please try again later."
_STORE_FAILED = "Couldn't save the event. Please try again later."


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    DRAFT_PREVIEW = "draft_preview"
    EVENT_LIST = "event_list"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str


@dataclass
class SuccessResponse(ServiceResponse):
    event: Event | None = None


@dataclass
class ErrorResponse(ServiceResponse):
    pass


@dataclass
class DraftPreviewResponse(ServiceResponse):
    event: Event = field(default_factory=Event)


@dataclass
class EventListResponse(ServiceResponse):
    events: list[Event] = field(default_factory=list)


def _success(message: str, event: Event | None = None) -> SuccessResponse:
    return SuccessResponse(kind=ResponseKind.SUCCESS, message=message, event=event)


def _error(message: str) -> ErrorResponse:
    return ErrorResponse(kind=ResponseKind.ERROR, message=message)


# ---------------------------------------------------------------------------
# EventService
# ---------------------------------------------------------------------------


class EventService:
    """Command-side entry point shared by every UI adapter."""

    def __init__(
        self,
        store: EventStore,
        notifier: NotificationPort,
        interests: InterestDB,
        drafts: DraftBook,
        machine: ReminderStateMachine,
        scheduler: PrecisionScheduler,
        tz: ZoneInfo,
        default_thumbnail: str = "",
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._interests = interests
        self._drafts = drafts
        self._machine = machine
        self._scheduler = scheduler
        self._tz = tz
        self._default_thumbnail = default_thumbnail

    # -- create / confirm --------------------------------------------------

    def create_draft(
        self,
        context_key: int,
        creator_id: int,
        creator_name: str,
        text: str,
        now: datetime | None = None,
    ) -> ServiceResponse:
        """Parse /create arguments into this chat's draft slot."""
        try:
            args = parse_create_args(text, self._tz, now or self._machine.now())
        except ValidationError as exc:
            return _error(str(exc))

        event = Event(
            name=args.name,
            description=args.description,
            location=args.location,
            organizer=args.organizer or creator_name,
            scheduled_time=args.scheduled_time,
            thumbnail_link=args.thumbnail_link or self._default_thumbnail,
        )
        self._drafts.slot(context_key).set(DraftEvent(event=event, creator_id=creator_id))
        logger.info("Draft '%s' created by user %d in chat %d", event.name, creator_id, context_key)
        return DraftPreviewResponse(
            kind=ResponseKind.DRAFT_PREVIEW,
            message="Draft message, use the /confirm command to post it.",
            event=event,
        )

    async def confirm_draft(
        self, context_key: int, requester_id: int, now: datetime | None = None,
    ) -> ServiceResponse:
        """Announce the requester's draft, store it and schedule its reminder."""
        slot = self._drafts.slot(context_key)
        try:
            template = slot.confirm(requester_id)
        except (NotFoundError, AuthorizationError) as exc:
            return _error(str(exc))

        if template.scheduled_time <= (now or self._machine.now()):
            slot.clear(expected=template)
            return _error("The scheduled time has already passed!")

        event = replace(template)
        try:
            event.external_message_id = await self._notifier.post_announcement(event)
        except TransportError as exc:
            logger.error("Announcement for '%s' failed: %s", event.name, exc)
            return _error(_TRY_AGAIN)

        try:
            event.id = self._store.insert(event)
        except StoreError as exc:
            logger.error("Storing event '%s' failed: %s", event.name, exc)
            await self._withdraw_announcement(event)
            return _error(_STORE_FAILED)

        slot.clear(expected=template)
        self.schedule_event(event)
        return _success("Event posted!", event)

    async def _withdraw_announcement(self, event: Event) -> None:
        try:
            await self._notifier.delete_announcement(event.external_message_id)
        except TransportError as exc:
            logger.error(
                "Orphaned announcement %s for '%s': %s",
                event.external_message_id, event.name, exc,
            )

    # -- scheduling --------------------------------------------------------

    def schedule_event(self, event: Event) -> None:
        """Queue the reminder task; it queues the retirement task when it fires."""
        self._scheduler.schedule(
            self._machine.reminder_at(event),
            partial(self._on_reminder_due, event.id),
            name=f"remind #{event.id}",
        )

    def _schedule_retirement(self, event: Event) -> None:
        self._scheduler.schedule(
            self._machine.retire_at(event),
            partial(self._machine.advance, event.id),
            name=f"retire #{event.id}",
        )

    async def _on_reminder_due(self, event_id: int) -> None:
        try:
            await self._machine.advance(event_id)
        finally:
            try:
                event = self._store.get_by_id(event_id)
            except StoreError as exc:
                logger.error("Could not queue retirement of event #%d: %s", event_id, exc)
                event = None
            if event is not None:
                self._schedule_retirement(event)

    def reschedule_all(self, now: datetime | None = None) -> int:
        """Rebuild timer tasks for every stored event after a restart.

        Events not yet reminded get their reminder task; the rest only need
        retiring. Returns the number of tasks queued.
        """
        now = now or self._machine.now()
        events = self._store.list_all_ordered_by_time()
        for event in events:
            if event.reminder_sent == 0 and now < event.scheduled_time:
                self.schedule_event(event)
            else:
                self._schedule_retirement(event)
        logger.info("Rescheduled %d stored event(s)", len(events))
        return len(events)

    # -- cancel ------------------------------------------------------------

    async def cancel_event(self, text: str) -> ServiceResponse:
        """Cancel a posted event by name, notifying everyone interested."""
        try:
            args = parse_command_args(text)
        except ValidationError as exc:
            return _error(str(exc))
        name = sanitize(" ".join(args))
        if not name:
            return _error("No event name provided.")

        try:
            event = self._store.get_by_name(name)
            if event is None:
                raise NotFoundError(f"No event named '{name}' was found.")
            notified = await self._machine.cancel(event)
        except NotFoundError as exc:
            return _error(str(exc))
        except TransportError as exc:
            logger.error("Cancel '%s' failed: %s", name, exc)
            return _error(_TRY_AGAIN)
        except StoreError as exc:
            logger.error("Cancel '%s' failed: %s", name, exc)
            return _error(_STORE_FAILED)

        logger.info("Cancel of '%s' notified %d user(s)", name, notified)
        return _success(cancel_text(event), event)

    # -- interest ------------------------------------------------------------

    async def register_interest(
        self, external_message_id: str, user_id: int, interested: bool,
    ) -> ServiceResponse:
        """Record an announcement button press."""
        event = self._store.get_by_external_message_id(external_message_id)
        if event is None:
            return _error("This event is no longer available.")

        if not interested:
            self._interests.remove_interest(external_message_id, user_id)
            return _success(f"You won't get reminders for {event.name}.", event)

        if self._interests.add_interest(external_message_id, user_id):
            await self._notifier.send_direct_message(
                user_id, f"You have signed up to receive reminders for *{event.name}*!",
            )
        return _success(f"You'll get a reminder before {event.name}.", event)

    # -- queries -------------------------------------------------------------

    def list_upcoming(self) -> ServiceResponse:
        try:
            events = self._store.list_all_ordered_by_time()
        except StoreError:
            return _error(_STORE_FAILED)
        if not events:
            return EventListResponse(kind=ResponseKind.EVENT_LIST, message="No upcoming events.")
        return EventListResponse(
            kind=ResponseKind.EVENT_LIST, message="Upcoming events:", events=events,
        )
