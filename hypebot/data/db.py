"""
HypeBot — Event Database.

The durable half of the lifecycle: confirmed events persist in SQLite across
restarts, together with the ``reminder_sent`` flag that records whether the
reminder step already ran. Interest sign-ups from the announcement buttons
live in their own table.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from hypebot.core.errors import StoreError
from hypebot.data.models import Event

logger = logging.getLogger(__name__)

_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _to_db_time(value: datetime) -> str:
    """Store instants as second-precision naive UTC so text order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def _from_db_time(value: str) -> datetime:
    return datetime.strptime(value, _TIME_FORMAT).replace(tzinfo=timezone.utc)


class _SQLiteDB(ABC):
    """Connection handling shared by the tables below."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from hypebot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction; sqlite errors become StoreError."""
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("SQLite error on %s: %s", self._db_path, exc)
            raise StoreError(f"Database operation failed: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

    @abstractmethod
    def _init_db(self) -> None:
        """Create or migrate this table."""


class EventDB(_SQLiteDB):
    """SQLite-backed implementation of the EventStore port."""

    def _init_db(self) -> None:
        """Create the events table if it doesn't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_name     TEXT    NOT NULL,
                    event_desc     TEXT    NOT NULL DEFAULT '',
                    event_time     TEXT    NOT NULL,
                    message_id     TEXT    NOT NULL DEFAULT '',
                    thumbnail_link TEXT    NOT NULL DEFAULT '',
                    reminder_sent  INTEGER NOT NULL DEFAULT 0
                )
            """)
            # Migrate existing DBs: location and organizer came later
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(events)").fetchall()
            }
            if "event_loc" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN event_loc TEXT NOT NULL DEFAULT ''"
                )
            if "organizer" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN organizer TEXT NOT NULL DEFAULT ''"
                )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_time ON events (event_time)"
            )
        logger.debug("Events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            name=row["event_name"],
            description=row["event_desc"],
            location=row["event_loc"],
            organizer=row["organizer"],
            scheduled_time=_from_db_time(row["event_time"]),
            external_message_id=row["message_id"],
            thumbnail_link=row["thumbnail_link"],
            reminder_sent=row["reminder_sent"],
        )

    def insert(self, event: Event) -> int:
        """Insert a posted event and return its new id."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (event_name, event_desc, event_loc, organizer, event_time,
                     message_id, thumbnail_link, reminder_sent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.name, event.description, event.location, event.organizer,
                    _to_db_time(event.scheduled_time), event.external_message_id,
                    event.thumbnail_link, event.reminder_sent,
                ),
            )
            event_id = cursor.lastrowid

        logger.info(
            "Event stored: #%d '%s' at %s", event_id, event.name,
            _to_db_time(event.scheduled_time),
        )
        return event_id

    def _fetch_one(self, where: str, param: object) -> Event | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM events WHERE {where} ORDER BY event_time, id LIMIT 1",
                (param,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def get_by_id(self, event_id: int) -> Event | None:
        """Fetch a single event by ID."""
        return self._fetch_one("id = ?", event_id)

    def get_by_name(self, name: str) -> Event | None:
        """Fetch the earliest event with exactly this name."""
        return self._fetch_one("event_name = ?", name)

    def get_by_external_message_id(self, message_id: str) -> Event | None:
        """Fetch the event announced by the given chat message."""
        if not message_id:
            return None
        return self._fetch_one("message_id = ?", message_id)

    def list_all_ordered_by_time(self) -> list[Event]:
        """Return every stored event, earliest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events ORDER BY event_time, id"
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def set_reminder_sent(self, event_id: int, value: int) -> None:
        """Record the reminder state. The flag never moves back to 0."""
        if value not in (0, 1):
            raise ValueError(f"reminder_sent must be 0 or 1, got {value!r}")
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE events SET reminder_sent = ? WHERE id = ? AND reminder_sent <= ?",
                (value, event_id, value),
            )
        if cursor.rowcount:
            logger.info("Event #%d reminder_sent=%d", event_id, value)

    def delete(self, event_id: int) -> None:
        """Permanently delete an event. Missing rows are ignored."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        if cursor.rowcount:
            logger.info("Event #%d deleted", event_id)
        else:
            logger.debug("Event #%d already deleted", event_id)


class InterestDB(_SQLiteDB):
    """Which users asked to be reminded about which announcement."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS interests (
                    message_id TEXT    NOT NULL,
                    user_id    INTEGER NOT NULL,
                    created_at TEXT    NOT NULL,
                    PRIMARY KEY (message_id, user_id)
                )
            """)
        logger.debug("Interests table initialized at %s", self._db_path)

    def add_interest(self, message_id: str, user_id: int) -> bool:
        """Sign a user up. Returns False if they were already signed up."""
        now = _to_db_time(datetime.now(timezone.utc))
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO interests (message_id, user_id, created_at) "
                "VALUES (?, ?, ?)",
                (message_id, user_id, now),
            )
        added = cursor.rowcount > 0
        if added:
            logger.info("User %d interested in message %s", user_id, message_id)
        return added

    def remove_interest(self, message_id: str, user_id: int) -> bool:
        """Withdraw a sign-up. Returns False if there was none."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM interests WHERE message_id = ? AND user_id = ?",
                (message_id, user_id),
            )
        removed = cursor.rowcount > 0
        if removed:
            logger.info("User %d no longer interested in message %s", user_id, message_id)
        return removed

    def list_users(self, message_id: str) -> list[int]:
        """Return interested user ids in sign-up order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id FROM interests WHERE message_id = ? "
                "ORDER BY created_at, rowid",
                (message_id,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    def clear(self, message_id: str) -> None:
        """Drop every sign-up for a retired announcement."""
        with self._connect() as conn:
            conn.execute("DELETE FROM interests WHERE message_id = ?", (message_id,))
