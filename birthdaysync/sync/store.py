"""SQLite-backed calendar store with an all-or-nothing batch apply."""

import logging
import sqlite3
from datetime import datetime
from typing import Iterable, Optional, Protocol

import aiosqlite

from birthdaysync.errors import BatchRejected, BatchTooLarge, StoreUnavailable
from birthdaysync.sync.batch import EntityKind, Operation, OperationType, SyncBatch
from birthdaysync.sync.models import Reminder

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = (
    "calendar_id",
    "title",
    "description",
    "dtstart",
    "dtend",
    "event_timezone",
    "all_day",
    "status",
    "availability",
    "has_alarm",
    "person_key",
)
_REMINDER_COLUMNS = ("event_id", "minutes", "method")

_TABLES = {
    EntityKind.EVENT: ("events", _EVENT_COLUMNS),
    EntityKind.REMINDER: ("reminders", _REMINDER_COLUMNS),
}


class CalendarStore(Protocol):
    """Read and atomic-write interface the sync engine depends on."""

    async def get_or_create_calendar(self, name: str) -> int: ...

    async def query_all_day_events(
        self,
        calendar_id: int,
        instants: Iterable[int],
        title_contains: Optional[str] = None,
        person_key: Optional[str] = None,
    ) -> list[dict]: ...

    async def query_reminders(self, event_ids: Iterable[int]) -> list[Reminder]: ...

    async def apply_batch(self, batch: SyncBatch) -> list[Optional[int]]: ...


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteCalendarStore:
    """Calendar store living in the service database."""

    def __init__(self, db: aiosqlite.Connection, max_batch_operations: int = 500):
        self.db = db
        self.max_batch_operations = max_batch_operations

    async def get_or_create_calendar(self, name: str) -> int:
        """Id of the calendar called ``name``, creating it on first use."""
        try:
            cursor = await self.db.execute(
                "SELECT id FROM calendars WHERE name = ?", (name,)
            )
            row = await cursor.fetchone()
            if row:
                return row["id"]

            cursor = await self.db.execute(
                "INSERT INTO calendars (name, timezone) VALUES (?, 'UTC') RETURNING id",
                (name,),
            )
            row = await cursor.fetchone()
            await self.db.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Unable to resolve calendar '{name}': {e}") from e

        logger.info(f"Created calendar '{name}' (id {row['id']})")
        return row["id"]

    async def query_all_day_events(
        self,
        calendar_id: int,
        instants: Iterable[int],
        title_contains: Optional[str] = None,
        person_key: Optional[str] = None,
    ) -> list[dict]:
        """
        Events of ``calendar_id`` starting at one of ``instants`` (epoch ms).

        Instants are all-day UTC midnights. The all-day flag itself is not
        filtered on, so an event edited into a timed event is still found
        and can be put back.
        """
        instants = sorted(set(instants))
        if not instants:
            return []

        placeholders = ",".join("?" * len(instants))
        query = f"""SELECT id, title, description, dtstart, dtend, event_timezone,
                           all_day, person_key
                    FROM events
                    WHERE calendar_id = ? AND dtstart IN ({placeholders})"""
        params: list = [calendar_id, *instants]

        if title_contains is not None:
            query += " AND title LIKE ? ESCAPE '\\'"
            params.append(f"%{_escape_like(title_contains)}%")
        if person_key is not None:
            query += " AND person_key = ?"
            params.append(person_key)

        query += " ORDER BY id"

        try:
            cursor = await self.db.execute(query, params)
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Event query failed: {e}") from e

        return [dict(row) for row in rows]

    async def query_reminders(self, event_ids: Iterable[int]) -> list[Reminder]:
        event_ids = sorted(set(event_ids))
        if not event_ids:
            return []

        placeholders = ",".join("?" * len(event_ids))
        try:
            cursor = await self.db.execute(
                f"""SELECT id, event_id, minutes, method FROM reminders
                    WHERE event_id IN ({placeholders}) ORDER BY id""",
                event_ids,
            )
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Reminder query failed: {e}") from e

        return [
            Reminder(
                minutes=row["minutes"],
                id=row["id"],
                event_id=row["event_id"],
                method=row["method"] or "alert",
            )
            for row in rows
        ]

    async def count_events(self, calendar_id: int) -> int:
        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM events WHERE calendar_id = ?", (calendar_id,)
        )
        return (await cursor.fetchone())[0]

    async def apply_batch(self, batch: SyncBatch) -> list[Optional[int]]:
        """
        Apply every operation of ``batch`` or none of them.

        Returns one entry per operation: the new id for Inserts, None otherwise.
        """
        if len(batch) > self.max_batch_operations:
            raise BatchTooLarge(len(batch), self.max_batch_operations)

        results: list[Optional[int]] = []
        try:
            await self.db.execute("SAVEPOINT apply_batch")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Unable to open batch transaction: {e}") from e

        try:
            for index, operation in enumerate(batch):
                results.append(await self._apply_operation(batch, index, operation, results))
        except (sqlite3.IntegrityError, BatchRejected) as e:
            await self._rollback()
            if isinstance(e, BatchRejected):
                raise
            raise BatchRejected(f"Store rejected batch: {e}") from e
        except sqlite3.Error as e:
            await self._rollback()
            raise StoreUnavailable(f"Batch apply failed: {e}") from e

        try:
            await self.db.execute("RELEASE SAVEPOINT apply_batch")
            await self.db.commit()
        except sqlite3.Error as e:
            await self._rollback()
            raise StoreUnavailable(f"Batch commit failed: {e}") from e

        return results

    async def _rollback(self) -> None:
        try:
            await self.db.execute("ROLLBACK TO SAVEPOINT apply_batch")
            await self.db.execute("RELEASE SAVEPOINT apply_batch")
            await self.db.commit()
        except sqlite3.Error as e:
            logger.error(f"Rollback of failed batch did not complete: {e}")

    async def _apply_operation(
        self,
        batch: SyncBatch,
        index: int,
        operation: Operation,
        results: list[Optional[int]],
    ) -> Optional[int]:
        table, columns = _TABLES[operation.kind]
        values = dict(operation.values)

        if operation.back_reference is not None:
            ref = operation.back_reference
            if not _is_event_insert(batch, ref, index):
                raise BatchRejected(
                    f"Operation {index} back-references {ref}, which is not an earlier event insert"
                )
            values["event_id"] = results[ref]

        if operation.type is OperationType.INSERT:
            names = [c for c in columns if c in values]
            cursor = await self.db.execute(
                f"""INSERT INTO {table} ({", ".join(names)})
                    VALUES ({", ".join("?" * len(names))}) RETURNING id""",
                [values[c] for c in names],
            )
            row = await cursor.fetchone()
            return row[0]

        if operation.target_id is None:
            raise BatchRejected(f"Operation {index} ({operation.type.value}) has no target id")

        if operation.type is OperationType.UPDATE:
            names = [c for c in columns if c in values and c != "calendar_id"]
            assignments = ", ".join(f"{c} = ?" for c in names)
            if table == "events":
                assignments += ", updated_at = ?"
                params = [values[c] for c in names] + [datetime.utcnow().isoformat()]
            else:
                params = [values[c] for c in names]
            cursor = await self.db.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                [*params, operation.target_id],
            )
        else:
            cursor = await self.db.execute(
                f"DELETE FROM {table} WHERE id = ?", (operation.target_id,)
            )

        if cursor.rowcount == 0:
            # Already gone, e.g. removed by hand since it was read
            logger.info(
                f"{operation.type.value} of {operation.kind.value} {operation.target_id} "
                "matched nothing"
            )
        return None


def _is_event_insert(batch: SyncBatch, ref: int, index: int) -> bool:
    if not 0 <= ref < index:
        return False
    target = batch[ref]
    return target.type is OperationType.INSERT and target.kind is EntityKind.EVENT
