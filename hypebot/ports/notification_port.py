"""Notification port — abstract interface for the chat platform.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol

from hypebot.data.models import Event


class NotificationPort(Protocol):
    """Abstract chat transport used by core modules.

    ``post_announcement`` raises TransportError on failure.
    ``delete_announcement`` treats an already-deleted message as success.
    ``send_direct_message`` is best-effort: failures are logged, not raised.
    """

    async def post_announcement(self, event: Event) -> str: ...

    async def delete_announcement(self, external_message_id: str) -> None: ...

    async def list_interested_users(self, external_message_id: str) -> list[int]: ...

    async def send_direct_message(self, user_id: int, text: str) -> None: ...
