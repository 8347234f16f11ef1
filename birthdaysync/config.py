"""Application configuration management."""

import re
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (calendar store, directory, audit log)
    database_path: str = "/data/birthday-sync.db"

    # Server
    log_level: str = "info"

    # Horizon, in calendar years around the current year
    horizon_years_past: int = 1
    horizon_years_future: int = 5
    # Extra years after the next occurrence covered by a single-person sync
    narrow_horizon_years: int = 0

    # "feb28" or "skip"
    leap_day_policy: str = "feb28"

    # Reminders (minutes before the all-day start)
    default_reminder_minutes: str = "0,1440"

    # Batching
    max_batch_operations: int = 200
    store_max_batch_operations: int = 500

    # Calendar
    calendar_name: str = "Birthdays"
    event_title_template: str = "{name}'s birthday"
    # "title" or "person_key"
    linkage: str = "title"

    # Sync settings
    sync_interval_minutes: int = 60
    job_lock_timeout_minutes: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def parse_reminder_minutes(raw: Optional[str]) -> tuple[int, ...]:
    """Parse comma/newline/semicolon separated reminder offsets in minutes."""
    if not raw:
        return ()

    offsets: set[int] = set()
    for token in re.split(r"[,\n;]+", raw):
        token = token.strip()
        if not token:
            continue
        minutes = int(token)
        if minutes < 0:
            raise ValueError(f"Reminder offset must not be negative: {minutes}")
        offsets.add(minutes)
    return tuple(sorted(offsets))
