"""
HypeBot — Draft Slots.

A draft is an event that has been described but not yet announced. Each
chat owns one slot: a new /create in the same chat replaces whatever draft
was there (even another user's), while drafts in different chats never
touch each other.

Every slot has its own lock. Critical sections only copy fields, so they
are safe to enter from the async handlers and from worker threads alike.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from hypebot.core.errors import AuthorizationError, NotFoundError
from hypebot.data.models import DraftEvent, Event

logger = logging.getLogger(__name__)


def _copy_draft(draft: DraftEvent) -> DraftEvent:
    return DraftEvent(event=replace(draft.event), creator_id=draft.creator_id)


class DraftSlot:
    """Holds at most one pending, unconfirmed event."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._draft: DraftEvent | None = None

    def set(self, draft: DraftEvent) -> None:
        """Replace the current draft unconditionally."""
        stored = _copy_draft(draft)
        stored.event.id = None
        stored.event.external_message_id = ""
        stored.event.reminder_sent = 0
        with self._lock:
            previous = self._draft
            self._draft = stored
        if previous is not None and previous.creator_id != draft.creator_id:
            logger.warning(
                "Draft by user %d replaced by user %d",
                previous.creator_id, draft.creator_id,
            )

    def get(self) -> DraftEvent | None:
        """Return a copy of the current draft, or None if there is none."""
        with self._lock:
            draft = self._draft
        if draft is None:
            return None
        return _copy_draft(draft)

    def confirm(self, requester_id: int) -> Event:
        """Return the draft's event template if ``requester_id`` owns it.

        The slot is left untouched; the caller clears it once the event is
        posted and stored.
        """
        with self._lock:
            draft = self._draft
        if draft is None:
            raise NotFoundError("There is no pending event to confirm.")
        if draft.creator_id != requester_id:
            raise AuthorizationError("You do not have a pending event!")
        return replace(draft.event)

    def clear(self, expected: Event | None = None) -> bool:
        """Empty the slot.

        With ``expected`` (the template ``confirm`` returned), only clears if
        the slot still holds that same event, so a newer /create is never
        thrown away.
        """
        with self._lock:
            if self._draft is None:
                return False
            if expected is not None and self._draft.event != expected:
                return False
            self._draft = None
        return True


class DraftBook:
    """Per-chat draft slots, created on first use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[int, DraftSlot] = {}

    def slot(self, context_key: int) -> DraftSlot:
        with self._lock:
            slot = self._slots.get(context_key)
            if slot is None:
                slot = self._slots[context_key] = DraftSlot()
        return slot
