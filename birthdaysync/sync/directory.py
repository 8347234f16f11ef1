"""Read-only access to the person directory."""

import logging
from typing import Callable, Optional, Protocol

import aiosqlite

from birthdaysync.config import parse_reminder_minutes
from birthdaysync.errors import MalformedBirthDate
from birthdaysync.sync.birthdate import BirthDate
from birthdaysync.sync.models import Person

logger = logging.getLogger(__name__)

MalformedCallback = Callable[[MalformedBirthDate], None]


class Directory(Protocol):
    async def list_people_with_birthday(
        self, on_malformed: Optional[MalformedCallback] = None
    ) -> list[Person]: ...

    async def get_person(self, person_key: str) -> Optional[Person]: ...


def person_from_row(row) -> Person:
    """Build a Person from a ``people`` row; raises MalformedBirthDate."""
    person_key = row["person_key"]
    raw_birthday = row["birthday"]
    birth_date = None
    if raw_birthday is not None and str(raw_birthday).strip():
        birth_date = BirthDate.parse(raw_birthday, person_key=person_key)

    reminder_offsets = None
    raw_reminders = row["reminder_minutes"]
    if raw_reminders is not None and str(raw_reminders).strip():
        try:
            reminder_offsets = parse_reminder_minutes(raw_reminders)
        except ValueError as e:
            logger.warning(
                f"Ignoring reminder override {raw_reminders!r} for person {person_key}: {e}"
            )

    return Person(
        key=person_key,
        display_name=row["display_name"],
        birth_date=birth_date,
        reminder_offsets=reminder_offsets,
    )


class SQLiteDirectory:
    """Directory backed by the ``people`` table."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def list_people_with_birthday(
        self, on_malformed: Optional[MalformedCallback] = None
    ) -> list[Person]:
        """
        Everyone whose birthday parses.

        People with a malformed birthday are left out and passed to
        ``on_malformed`` (or logged when no callback is given).
        """
        cursor = await self.db.execute(
            """SELECT person_key, display_name, birthday, reminder_minutes
               FROM people
               WHERE birthday IS NOT NULL AND TRIM(birthday) != ''
               ORDER BY person_key"""
        )
        rows = await cursor.fetchall()

        people = []
        for row in rows:
            try:
                people.append(person_from_row(row))
            except MalformedBirthDate as e:
                if on_malformed is not None:
                    on_malformed(e)
                else:
                    logger.warning(f"Skipping person {row['person_key']}: {e}")
        return people

    async def get_person(self, person_key: str) -> Optional[Person]:
        cursor = await self.db.execute(
            """SELECT person_key, display_name, birthday, reminder_minutes
               FROM people WHERE person_key = ?""",
            (person_key,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return person_from_row(row)
