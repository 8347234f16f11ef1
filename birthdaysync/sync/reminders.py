"""Reminder templates and construction of desired birthday events."""

from dataclasses import dataclass
from typing import Iterator, Optional

from birthdaysync.config import get_settings
from birthdaysync.sync.expander import ALL_DAY_TIMEZONE
from birthdaysync.sync.models import CalendarEvent, Occurrence, Person, Reminder


@dataclass(frozen=True)
class ReminderTemplate:
    """Reminder offsets, in minutes before the event start, attached to new events."""

    offsets: tuple[int, ...] = (0,)
    method: str = "alert"

    def __post_init__(self):
        if any(minutes < 0 for minutes in self.offsets):
            raise ValueError(f"Reminder offsets must not be negative: {self.offsets}")

    def for_person(self, person: Person) -> "ReminderTemplate":
        """Template overridden by the person's own offsets, when the directory has any."""
        if person.reminder_offsets is None:
            return self
        return ReminderTemplate(offsets=tuple(person.reminder_offsets), method=self.method)

    def reminders(self) -> list[Reminder]:
        return [Reminder(minutes=minutes, method=self.method) for minutes in self.offsets]

    def __iter__(self) -> Iterator[int]:
        return iter(self.offsets)

    def __len__(self) -> int:
        return len(self.offsets)


class BirthdayEventFactory:
    """Builds the desired CalendarEvent for a person's occurrence."""

    def __init__(
        self,
        template: ReminderTemplate,
        title_template: Optional[str] = None,
    ):
        self.template = template
        self.title_template = title_template or get_settings().event_title_template

    def title_for(self, person: Person) -> str:
        return self.title_template.format(name=person.display_name)

    def description_for(self, person: Person) -> str:
        if person.birth_date is not None and person.birth_date.has_year:
            return f"Born in {person.birth_date.year}"
        return ""

    def build(self, person: Person, occurrence: Occurrence) -> CalendarEvent:
        return CalendarEvent(
            person_key=person.key,
            title=self.title_for(person),
            start=occurrence.start,
            end=occurrence.end,
            all_day=occurrence.all_day,
            description=self.description_for(person),
            timezone=ALL_DAY_TIMEZONE,
            reminders=self.template.for_person(person).reminders(),
        )
