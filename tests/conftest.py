"""Shared test fixtures and configuration.

Sets up fake environment variables so hypebot.config doesn't sys.exit(),
and provides common fixtures like a temp DB and a recording notifier.
"""

import os

# Patch env vars BEFORE any hypebot imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("EVENT_CHANNEL_ID", "-100123")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("EVENT_TIMEZONE", "UTC")

from datetime import datetime, timedelta, timezone

import pytest


NOW = datetime(2026, 3, 14, 18, 0, tzinfo=timezone.utc)


class FakeNotifier:
    """In-memory NotificationPort that records every call."""

    def __init__(self, interested=None):
        self.interested: dict[str, list[int]] = interested or {}
        self.posted: list = []
        self.deleted: list[str] = []
        self.direct_messages: list[tuple[int, str]] = []
        self._next_message_id = 100

    async def post_announcement(self, event):
        self._next_message_id += 1
        message_id = str(self._next_message_id)
        self.posted.append((message_id, event))
        return message_id

    async def delete_announcement(self, external_message_id):
        self.deleted.append(external_message_id)
        self.interested.pop(external_message_id, None)

    async def list_interested_users(self, external_message_id):
        return list(self.interested.get(external_message_id, []))

    async def send_direct_message(self, user_id, text):
        self.direct_messages.append((user_id, text))


class FakeClock:
    """Settable clock for code that reads the current time itself."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_events.db")


@pytest.fixture
def event_db(tmp_db_path):
    """Return an EventDB instance backed by a temp file."""
    from hypebot.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def interest_db(tmp_db_path):
    """Return an InterestDB sharing the event DB file."""
    from hypebot.data.db import InterestDB
    return InterestDB(db_path=tmp_db_path)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def machine(event_db, notifier, clock):
    from hypebot.core.reminders import ReminderStateMachine
    return ReminderStateMachine(event_db, notifier, clock=clock)


@pytest.fixture
def add_event(event_db):
    """Insert a posted event starting ``minutes`` from NOW."""
    from hypebot.data.models import Event

    def _add(name="Game night", minutes=30, reminder_sent=0, message_id="101"):
        event = Event(
            name=name,
            description="Bring snacks",
            location="Room 101",
            organizer="Amit",
            scheduled_time=NOW + timedelta(minutes=minutes),
            external_message_id=message_id,
            reminder_sent=reminder_sent,
        )
        event.id = event_db.insert(event)
        return event

    return _add
