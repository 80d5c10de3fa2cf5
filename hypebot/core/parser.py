"""
HypeBot — Command Argument Parser.

Turns the text after /create into a draft event:

    /create "Game night" "04:20pm 2069-04-20" "Bring snacks" "Room 101"
            "https://optional.thumbnail/link.png" "optional organizer"

Times are written in the configured event timezone and stored as UTC.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

from hypebot.core.errors import ValidationError

logger = logging.getLogger(__name__)

TIME_FORMAT = "%I:%M%p %Y-%m-%d"
TIME_FORMAT_HELP = "HH:MMam YYYY-MM-DD"

_MASS_MENTION = re.compile(r"@(everyone|here|channel|all)\b", re.IGNORECASE)


@dataclass
class CreateArgs:
    """Validated arguments of a /create command."""

    name: str
    scheduled_time: datetime
    description: str
    location: str
    thumbnail_link: str | None = None
    organizer: str | None = None


def parse_command_args(text: str) -> list[str]:
    """Split shell-style, honoring double quotes (and smart quotes from phones)."""
    text = text.replace("“", '"').replace("”", '"')
    try:
        return shlex.split(text)
    except ValueError as exc:
        raise ValidationError(f"Could not read the arguments: {exc}") from exc


def parse_event_time(text: str, tz: ZoneInfo) -> datetime:
    """Parse 'HH:MMam YYYY-MM-DD' in ``tz`` and return the UTC instant."""
    try:
        local = datetime.strptime(text.strip(), TIME_FORMAT)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid date format. Format is {TIME_FORMAT_HELP}"
        ) from exc
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def sanitize(text: str) -> str:
    """Strip channel-wide mention tokens and surrounding whitespace."""
    return _MASS_MENTION.sub(r"\1", text).strip()


def is_url(text: str) -> bool:
    parsed = urlparse(text)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def parse_create_args(text: str, tz: ZoneInfo, now: datetime) -> CreateArgs:
    """Validate the full /create argument string.

    The fifth argument is taken as the thumbnail if it looks like a URL,
    otherwise as the organizer.
    """
    args = parse_command_args(text)
    required = ("event name", "date", "description", "location")
    if len(args) < len(required):
        missing = required[len(args)]
        raise ValidationError(f"No {missing} provided.")

    name, date_text, description, location, *rest = args
    if not sanitize(name):
        raise ValidationError("No event name provided.")

    scheduled = parse_event_time(date_text, tz)
    if scheduled <= now:
        raise ValidationError("The scheduled time has already passed!")

    thumbnail: str | None = None
    organizer: str | None = None
    if rest and is_url(rest[0].strip("<>")):
        thumbnail = rest.pop(0).strip("<>")
    if rest:
        organizer = sanitize(rest.pop(0)) or None
    if rest:
        logger.debug("Ignoring %d extra /create argument(s)", len(rest))

    return CreateArgs(
        name=sanitize(name),
        scheduled_time=scheduled,
        description=sanitize(description),
        location=sanitize(location),
        thumbnail_link=thumbnail,
        organizer=organizer,
    )
