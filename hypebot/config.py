"""
HypeBot — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from hypebot/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str
    EVENT_CHANNEL_ID: int

    # SQLite
    DATABASE_PATH: str = "data/events.db"

    # Security — users allowed to create, confirm and cancel events
    ALLOWED_USER_IDS: list[int] = []

    # Announcements
    EVENT_TIMEZONE: str = "UTC"
    DEFAULT_THUMBNAIL_LINK: str = ""

    # Lifecycle timing
    REMINDER_LEAD_MINUTES: int = 10
    RETIREMENT_WINDOW_MINUTES: int = 60
    SWEEP_INTERVAL_SECONDS: int = 60
    SCHEDULER_WORKERS: int = 4

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("EVENT_TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"Unknown timezone {v!r}, should be in format \"Country/City\""
            ) from exc
        return v

    @field_validator(
        "REMINDER_LEAD_MINUTES",
        "RETIREMENT_WINDOW_MINUTES",
        "SWEEP_INTERVAL_SECONDS",
        "SCHEDULER_WORKERS",
    )
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    channel = os.getenv("EVENT_CHANNEL_ID", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not channel.lstrip("-").isdigit():
        print("ERROR: EVENT_CHANNEL_ID is missing or not a chat id in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        EVENT_CHANNEL_ID=channel,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/events.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        EVENT_TIMEZONE=os.getenv("EVENT_TIMEZONE", "UTC"),
        DEFAULT_THUMBNAIL_LINK=os.getenv("DEFAULT_THUMBNAIL_LINK", ""),
        REMINDER_LEAD_MINUTES=os.getenv("REMINDER_LEAD_MINUTES", "10"),
        RETIREMENT_WINDOW_MINUTES=os.getenv("RETIREMENT_WINDOW_MINUTES", "60"),
        SWEEP_INTERVAL_SECONDS=os.getenv("SWEEP_INTERVAL_SECONDS", "60"),
        SCHEDULER_WORKERS=os.getenv("SCHEDULER_WORKERS", "4"),
    )


# Singleton — imported by all other modules as:
#   from hypebot.config import settings
settings = _load_settings()
