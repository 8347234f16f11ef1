"""Reads a person's existing birthday events back from the calendar store."""

import logging
from datetime import date, datetime
from typing import Iterable

from birthdaysync.sync.birthdate import LeapDayPolicy
from birthdaysync.sync.expander import (
    from_epoch_millis,
    next_occurrence_on_or_after,
    to_epoch_millis,
)
from birthdaysync.sync.linkage import EventLinkage
from birthdaysync.sync.models import CalendarEvent, Person
from birthdaysync.sync.store import CalendarStore

logger = logging.getLogger(__name__)


class StoreReader:
    """Finds stored events linked to a person at candidate start instants."""

    def __init__(self, store: CalendarStore, calendar_id: int, linkage: EventLinkage):
        self.store = store
        self.calendar_id = calendar_id
        self.linkage = linkage

    async def find_existing(
        self,
        person: Person,
        candidate_instants: Iterable[datetime],
    ) -> list[CalendarEvent]:
        """Events linked to ``person`` that start at one of ``candidate_instants``."""
        instants = {to_epoch_millis(instant) for instant in candidate_instants}
        if not instants:
            return []

        rows = await self.store.query_all_day_events(
            self.calendar_id,
            instants,
            **self.linkage.query_filter(person),
        )
        rows = [row for row in rows if self.linkage.matches(person, row)]
        if not rows:
            return []

        reminders_by_event: dict[int, list] = {}
        for reminder in await self.store.query_reminders(row["id"] for row in rows):
            reminders_by_event.setdefault(reminder.event_id, []).append(reminder)

        events = []
        for row in rows:
            # all-day instants are UTC midnights whatever zone the event carries
            tz_id = None if row["all_day"] else row["event_timezone"]
            events.append(CalendarEvent(
                person_key=person.key,
                title=row["title"],
                start=from_epoch_millis(row["dtstart"], tz_id),
                end=from_epoch_millis(row["dtend"], tz_id),
                all_day=bool(row["all_day"]),
                description=row["description"] or "",
                timezone=row["event_timezone"] or "UTC",
                id=row["id"],
                reminders=reminders_by_event.get(row["id"], []),
            ))
        logger.debug(f"Found {len(events)} stored event(s) for person {person.key}")
        return events

    async def has_upcoming_event(
        self,
        person: Person,
        today: date,
        leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
    ) -> bool:
        """Whether the next occurrence of the person's birthday is already stored."""
        if person.birth_date is None:
            return False
        occurrence = next_occurrence_on_or_after(
            person.birth_date, today, person.key, leap_day_policy
        )
        return bool(await self.find_existing(person, [occurrence.start]))
