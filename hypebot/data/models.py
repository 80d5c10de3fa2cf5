"""
HypeBot — Data Models.

Events persist in SQLite once confirmed, surviving bot restarts. A draft
lives only in process memory until its creator confirms it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


def _epoch() -> datetime:
    return datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass
class Event:
    """A scheduled event announced in the event channel.

    ``external_message_id`` is empty until the announcement is posted.
    ``reminder_sent`` is the durable record that the reminder already went
    out (0 = pending, 1 = sent) and only ever moves from 0 to 1.
    """

    name: str = ""
    description: str = ""
    location: str = ""
    organizer: str = ""
    scheduled_time: datetime = field(default_factory=_epoch)  # aware, UTC
    external_message_id: str = ""
    thumbnail_link: str = ""
    reminder_sent: int = 0
    id: int | None = None

    @property
    def is_posted(self) -> bool:
        return self.external_message_id != ""


@dataclass
class DraftEvent:
    """An unconfirmed event template and the user who last wrote it."""

    event: Event = field(default_factory=Event)
    creator_id: int = 0
