"""Periodic sync job."""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Optional

from birthdaysync.config import get_settings
from birthdaysync.database import get_database, is_sync_paused
from birthdaysync.errors import BirthdaySyncError

logger = logging.getLogger(__name__)


async def run_periodic_sync() -> None:
    """Run the full birthday sync across the whole horizon."""
    if await is_sync_paused():
        logger.debug("Sync is paused, skipping periodic sync")
        return

    if not await acquire_job_lock("periodic_sync"):
        logger.debug("Periodic sync already running, skipping")
        return

    try:
        from birthdaysync.sync.engine import trigger_sync_all

        try:
            report = await trigger_sync_all()
        except BirthdaySyncError as e:
            # Recorded by the engine; the next run retries the whole pass.
            logger.error(f"Periodic sync failed: {e}")
            return

        if report is not None:
            logger.info(f"Periodic sync completed with status {report.status}")

    finally:
        await release_job_lock("periodic_sync")


async def acquire_job_lock(job_name: str, timeout_minutes: Optional[int] = None) -> bool:
    """
    Acquire a lock for a job.

    Returns True if lock acquired, False if job is already running.
    """
    if timeout_minutes is None:
        timeout_minutes = get_settings().job_lock_timeout_minutes

    db = await get_database()
    now = datetime.utcnow()
    cutoff = (now - timedelta(minutes=timeout_minutes)).isoformat()

    # First, try to clean up stale locks
    await db.execute(
        """DELETE FROM job_locks WHERE job_name = ? AND locked_at < ?""",
        (job_name, cutoff)
    )
    await db.commit()

    try:
        await db.execute(
            """INSERT INTO job_locks (job_name, locked_at, locked_by)
               VALUES (?, ?, ?)""",
            (job_name, now.isoformat(), "worker")
        )
        await db.commit()
        return True
    except sqlite3.IntegrityError:
        # Lock already held by another process
        await db.rollback()
        return False


async def release_job_lock(job_name: str) -> None:
    """Release a job lock."""
    db = await get_database()
    await db.execute("DELETE FROM job_locks WHERE job_name = ?", (job_name,))
    await db.commit()
