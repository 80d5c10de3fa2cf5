"""
HypeBot — Reminder State Machine.

A posted event moves Pending → Reminded → Retired. The state is derived
from two stored fields (``scheduled_time`` and ``reminder_sent``) and the
current instant, so any trigger can recompute it after a restart.

Two triggers drive the transitions: the precision scheduler fires one task
per transition, and the sweep re-checks every stored event each minute.
Both call into this module, and every transition re-reads the row right
before acting. Reminders are delivered at least once: the flag is written
after the messages go out, so a crash in between (or two triggers that read
the row at the same moment) can produce a duplicate reminder, never a lost
one. Retirement is idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from hypebot.data.models import Event
    from hypebot.ports.event_store import EventStore
    from hypebot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(minutes=10)
RETIREMENT_WINDOW = timedelta(minutes=60)


class LifecycleState(Enum):
    DRAFTING = "drafting"
    PENDING = "pending"
    REMINDED = "reminded"
    RETIRED = "retired"


class Transition(Enum):
    REMIND = "remind"
    RETIRE = "retire"


@dataclass(frozen=True)
class Decision:
    """What the guard says should happen to an event right now."""

    should_remind: bool
    should_retire: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def evaluate(
    event: Event,
    now: datetime,
    lead: timedelta = REMINDER_LEAD,
    window: timedelta = RETIREMENT_WINDOW,
) -> Decision:
    """Pure transition guard.

    Retirement wins: an event past its retirement window is removed without
    a late reminder, whatever ``reminder_sent`` says.
    """
    start = event.scheduled_time
    reminder_due = start - lead <= now < start
    retire_due = now >= start + window
    return Decision(
        should_remind=reminder_due and event.reminder_sent == 0 and not retire_due,
        should_retire=retire_due,
    )


def state_of(event: Event | None) -> LifecycleState:
    """Lifecycle state from stored fields. A missing row is retired."""
    if event is None:
        return LifecycleState.RETIRED
    if not event.is_posted:
        return LifecycleState.DRAFTING
    if event.reminder_sent:
        return LifecycleState.REMINDED
    return LifecycleState.PENDING


def reminder_text(event: Event, now: datetime) -> str:
    minutes = max(1, int((event.scheduled_time - now).total_seconds() // 60))
    return f"Hello! *{event.name}* begins in *{minutes} minutes*!"


def cancel_text(event: Event) -> str:
    return f"*{event.name}* has been canceled!"


class ReminderStateMachine:
    """Applies lifecycle transitions against the store and the chat transport."""

    def __init__(
        self,
        store: EventStore,
        notifier: NotificationPort,
        lead: timedelta = REMINDER_LEAD,
        window: timedelta = RETIREMENT_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self.lead = lead
        self.window = window

    def now(self) -> datetime:
        return self._clock()

    def evaluate(self, event: Event, now: datetime | None = None) -> Decision:
        return evaluate(event, now or self._clock(), self.lead, self.window)

    def reminder_at(self, event: Event) -> datetime:
        return event.scheduled_time - self.lead

    def retire_at(self, event: Event) -> datetime:
        return event.scheduled_time + self.window

    # -- transitions ---------------------------------------------------------

    async def apply_remind(self, event: Event, now: datetime | None = None) -> bool:
        """Send the reminder to every interested user, then set the flag.

        Returns False without side effects when the freshly read row is gone,
        already reminded, or no longer inside the reminder window.
        """
        now = now or self._clock()
        current = self._store.get_by_id(event.id)
        if current is None:
            logger.debug("Reminder skipped: event #%s no longer exists", event.id)
            return False
        if not self.evaluate(current, now).should_remind:
            logger.debug("Reminder skipped: event #%d not due", current.id)
            return False
        if not current.is_posted:
            logger.warning("Reminder skipped: event #%d was never announced", current.id)
            return False

        users = await self._notifier.list_interested_users(current.external_message_id)
        text = reminder_text(current, now)
        for user_id in users:
            await self._notifier.send_direct_message(user_id, text)

        self._store.set_reminder_sent(current.id, 1)
        logger.info(
            "Reminder for event #%d '%s' sent to %d user(s)",
            current.id, current.name, len(users),
        )
        return True

    async def apply_retire(self, event: Event) -> bool:
        """Delete the announcement and the row.

        Safe to call any number of times: a row or message that is already
        gone counts as retired. Returns False if there was nothing to do.
        """
        current = self._store.get_by_id(event.id)
        if current is None:
            logger.debug("Retire skipped: event #%s already retired", event.id)
            return False

        if current.is_posted:
            await self._notifier.delete_announcement(current.external_message_id)
        self._store.delete(current.id)
        logger.info("Event #%d '%s' retired", current.id, current.name)
        return True

    async def cancel(self, event: Event) -> int:
        """Retire immediately, telling every interested user first.

        Returns how many users were notified.
        """
        users: list[int] = []
        if event.is_posted:
            users = await self._notifier.list_interested_users(event.external_message_id)
            text = cancel_text(event)
            for user_id in users:
                await self._notifier.send_direct_message(user_id, text)

        await self.apply_retire(event)
        logger.info("Event #%d '%s' canceled", event.id, event.name)
        return len(users)

    async def process(
        self, event: Event, now: datetime | None = None,
    ) -> Transition | None:
        """Apply whichever transition the guard calls for. Retirement first."""
        now = now or self._clock()
        decision = self.evaluate(event, now)
        if decision.should_retire:
            if await self.apply_retire(event):
                return Transition.RETIRE
            return None
        if decision.should_remind:
            if await self.apply_remind(event, now):
                return Transition.REMIND
        return None

    async def advance(
        self, event_id: int, now: datetime | None = None,
    ) -> Transition | None:
        """Re-read an event by id and process it. Missing rows are a no-op."""
        event = self._store.get_by_id(event_id)
        if event is None:
            logger.debug("Event #%d gone before its scheduled task fired", event_id)
            return None
        return await self.process(event, now)
