"""Event store port — abstract interface for durable event rows.

Core modules depend on this protocol, never on a specific database.
Implementations raise StoreError when the underlying storage fails.
"""

from __future__ import annotations

from typing import Protocol

from hypebot.data.models import Event


class EventStore(Protocol):
    """Abstract event storage used by core modules.

    Lookups return None when nothing matches. ``delete`` of an id that is
    already gone is a no-op, so racing retirements never fail.
    """

    def insert(self, event: Event) -> int: ...

    def get_by_id(self, event_id: int) -> Event | None: ...

    def get_by_name(self, name: str) -> Event | None: ...

    def get_by_external_message_id(self, message_id: str) -> Event | None: ...

    def list_all_ordered_by_time(self) -> list[Event]: ...

    def set_reminder_sent(self, event_id: int, value: int) -> None: ...

    def delete(self, event_id: int) -> None: ...
