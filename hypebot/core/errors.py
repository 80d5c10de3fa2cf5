"""Error taxonomy shared by the core, the ports and the adapters.

Command-facing errors (authorization, not-found, validation) are turned into
short replies for the invoking user. Transport and store errors come from
the outside world; background loops log them and move on.
"""

from __future__ import annotations


class HypeBotError(Exception):
    """Base class for all HypeBot errors."""


class AuthorizationError(HypeBotError):
    """The requesting user may not act on this draft or event."""


class NotFoundError(HypeBotError):
    """No draft, event or announcement matches the request."""


class ValidationError(HypeBotError):
    """User input (usually a time) could not be understood."""


class TransportError(HypeBotError):
    """A chat-platform call failed."""


class StoreError(HypeBotError):
    """A persistence call failed."""
