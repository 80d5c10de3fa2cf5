"""
HypeBot — Sweep.

The durability backstop for the precision scheduler: every minute, reload
every stored event and apply whatever transition is due. After a restart
this is what sends the reminders and deletes the expired announcements whose
timer tasks were lost with the old process.

One bad event never stops the sweep of the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from hypebot.core.errors import StoreError
from hypebot.core.reminders import Transition

if TYPE_CHECKING:
    from hypebot.core.reminders import ReminderStateMachine
    from hypebot.ports.event_store import EventStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    reminded: list[int] = field(default_factory=list)
    retired: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class SweepLoop:
    """Full-table re-evaluation, run on a fixed interval by the bot's job queue."""

    def __init__(self, store: EventStore, machine: ReminderStateMachine) -> None:
        self._store = store
        self._machine = machine

    async def tick(self, now: datetime | None = None) -> SweepReport:
        """Process every stored event once, earliest first."""
        now = now or self._machine.now()
        report = SweepReport()

        try:
            events = self._store.list_all_ordered_by_time()
        except StoreError as exc:
            logger.error("Sweep: could not load events: %s", exc)
            return report

        for event in events:
            report.scanned += 1
            try:
                transition = await self._machine.process(event, now)
            except Exception as exc:
                logger.error("Sweep: event #%s '%s' failed: %s", event.id, event.name, exc)
                report.failed.append(event.id)
                continue
            if transition is Transition.REMIND:
                report.reminded.append(event.id)
            elif transition is Transition.RETIRE:
                report.retired.append(event.id)

        if report.reminded or report.retired or report.failed:
            logger.info(
                "Sweep: %d scanned, %d reminded, %d retired, %d failed",
                report.scanned, len(report.reminded), len(report.retired), len(report.failed),
            )
        return report
