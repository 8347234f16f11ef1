"""Domain types shared by the expander, reader, reconciler and batch builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from birthdaysync.errors import AmbiguousMatch
from birthdaysync.sync.birthdate import BirthDate


@dataclass(frozen=True)
class Person:
    """Snapshot of a directory entry for one sync pass."""

    key: str
    display_name: str
    birth_date: Optional[BirthDate] = None
    reminder_offsets: Optional[tuple[int, ...]] = None

    @property
    def has_birthday(self) -> bool:
        return self.birth_date is not None


@dataclass(frozen=True, eq=False)
class Occurrence:
    """
    One yearly materialization of a birthday.

    Two occurrences are the same logical event when they belong to the same
    person and calendar year, whatever their exact instants.
    """

    person_key: Optional[str]
    year: int
    start: datetime
    end: datetime
    all_day: bool = True

    @property
    def key(self) -> tuple[Optional[str], int]:
        return (self.person_key, self.year)

    def __eq__(self, other):
        if not isinstance(other, Occurrence):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key)


@dataclass(frozen=True)
class Reminder:
    """Alarm fired ``minutes`` before the owning event starts."""

    minutes: int
    id: Optional[int] = None
    event_id: Optional[int] = None
    method: str = "alert"


@dataclass
class CalendarEvent:
    """A birthday event, either desired (no id) or read back from the store."""

    person_key: Optional[str]
    title: str
    start: datetime
    end: datetime
    all_day: bool = True
    description: str = ""
    timezone: str = "UTC"
    id: Optional[int] = None
    reminders: list[Reminder] = field(default_factory=list)

    @property
    def year(self) -> int:
        # start carries the event's own zone, so this is its civil year
        return self.start.year

    @property
    def key(self) -> tuple[Optional[str], int]:
        return (self.person_key, self.year)

    def differs_from(self, other: "CalendarEvent") -> bool:
        """True when the fields kept in sync differ between the two events."""
        return (
            self.start != other.start
            or self.end != other.end
            or self.title != other.title
            or self.all_day != other.all_day
        )


@dataclass
class ReconciliationPlan:
    """Insert/update/delete decisions for one or more people."""

    to_insert: list[CalendarEvent] = field(default_factory=list)
    to_update: list[CalendarEvent] = field(default_factory=list)
    to_delete: list[CalendarEvent] = field(default_factory=list)
    ambiguous: list[AmbiguousMatch] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_insert or self.to_update or self.to_delete)

    def summary(self) -> dict:
        return {
            "insert": len(self.to_insert),
            "update": len(self.to_update),
            "delete": len(self.to_delete),
            "ambiguous": len(self.ambiguous),
        }
