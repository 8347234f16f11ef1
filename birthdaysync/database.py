"""Database connection and schema management."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import aiosqlite

from birthdaysync.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()


SCHEMA = """
-- Calendars owned by the sync engine
CREATE TABLE IF NOT EXISTS calendars (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Calendar events (dtstart/dtend in epoch milliseconds)
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    calendar_id INTEGER NOT NULL REFERENCES calendars(id),
    title TEXT NOT NULL,
    description TEXT,
    dtstart INTEGER NOT NULL,
    dtend INTEGER NOT NULL,
    event_timezone TEXT NOT NULL DEFAULT 'UTC',
    all_day BOOLEAN DEFAULT FALSE,
    status TEXT DEFAULT 'confirmed',
    availability TEXT DEFAULT 'free',
    has_alarm BOOLEAN DEFAULT FALSE,
    person_key TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_events_start ON events(calendar_id, dtstart);

-- Reminders; an event cannot be deleted while reminders reference it
CREATE TABLE IF NOT EXISTS reminders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL REFERENCES events(id),
    minutes INTEGER NOT NULL,
    method TEXT DEFAULT 'alert'
);

CREATE INDEX IF NOT EXISTS idx_reminders_event ON reminders(event_id);

-- Person directory (read-only from the sync engine's point of view)
CREATE TABLE IF NOT EXISTS people (
    person_key TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    birthday TEXT,
    reminder_minutes TEXT
);

-- System settings
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value_plain TEXT,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Sync pass state (single row)
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_full_sync TIMESTAMP,
    last_narrow_sync TIMESTAMP,
    consecutive_failures INTEGER DEFAULT 0,
    last_error TEXT
);

-- Audit log
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    person_key TEXT,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    details TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_log_created ON sync_log(created_at);

-- Job locking
CREATE TABLE IF NOT EXISTS job_locks (
    job_name TEXT PRIMARY KEY,
    locked_at TIMESTAMP,
    locked_by TEXT
);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA foreign_keys = ON")
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.execute("INSERT OR IGNORE INTO sync_state (id) VALUES (1)")
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")


async def get_setting(key: str) -> Optional[dict]:
    """Get a setting by key."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM settings WHERE key = ?", (key,)
    )
    row = await cursor.fetchone()
    if row:
        return dict(row)
    return None


async def set_setting(key: str, value: str) -> None:
    """Set a setting value."""
    db = await get_database()
    now = datetime.utcnow().isoformat()
    await db.execute(
        """INSERT INTO settings (key, value_plain, updated_at)
           VALUES (?, ?, ?)
           ON CONFLICT(key) DO UPDATE SET
           value_plain = excluded.value_plain,
           updated_at = excluded.updated_at""",
        (key, value, now)
    )
    await db.commit()


async def is_sync_paused() -> bool:
    """Check if sync is globally paused."""
    setting = await get_setting("sync_paused")
    return bool(setting and setting.get("value_plain") == "true")
