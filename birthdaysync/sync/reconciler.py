"""
Diff between desired birthday occurrences and events read from the store.

Nothing in this module performs I/O: it consumes the desired occurrences and
the existing events and returns a ReconciliationPlan.
"""

import logging
from dataclasses import replace
from typing import Callable, Iterable, Optional

from birthdaysync.errors import AmbiguousMatch
from birthdaysync.sync.models import (
    CalendarEvent,
    Occurrence,
    ReconciliationPlan,
)

logger = logging.getLogger(__name__)

EventKey = tuple[Optional[str], int]


def _id_order(event: CalendarEvent) -> int:
    # Existing events always carry ids; keep a stable order if one does not.
    return event.id if event.id is not None else -1


def partition_existing(
    existing: Iterable[CalendarEvent],
) -> tuple[dict[EventKey, CalendarEvent], list[CalendarEvent], list[AmbiguousMatch]]:
    """
    Index existing events by (person, year).

    The lowest identifier is canonical for its key; the others are returned
    as duplicates.
    """
    grouped: dict[EventKey, list[CalendarEvent]] = {}
    for event in existing:
        grouped.setdefault(event.key, []).append(event)

    canonical: dict[EventKey, CalendarEvent] = {}
    duplicates: list[CalendarEvent] = []
    ambiguous: list[AmbiguousMatch] = []

    for key, events in grouped.items():
        events.sort(key=_id_order)
        canonical[key] = events[0]
        if len(events) > 1:
            duplicates.extend(events[1:])
            match = AmbiguousMatch(key[0], key[1], [e.id for e in events])
            ambiguous.append(match)
            logger.warning(f"{match}; keeping event {events[0].id}")

    return canonical, duplicates, ambiguous


def reconcile(
    desired: Iterable[Occurrence],
    existing: Iterable[CalendarEvent],
    make_event: Callable[[Occurrence], CalendarEvent],
    allow_deletes: bool = True,
) -> ReconciliationPlan:
    """
    Compute the operations that bring the store in line with ``desired``.

    Args:
        desired: Occurrences that should exist.
        existing: Events read back from the store, with identifiers and reminders.
        make_event: Builds the desired CalendarEvent (title, reminders) for an occurrence.
        allow_deletes: False for narrow passes, which only ever add or fix events.
    """
    plan = ReconciliationPlan()
    canonical, duplicates, ambiguous = partition_existing(existing)
    plan.ambiguous.extend(ambiguous)

    desired_keys = set()
    for occurrence in sorted(desired, key=lambda o: (str(o.person_key), o.year)):
        desired_keys.add(occurrence.key)
        wanted = make_event(occurrence)
        current = canonical.get(occurrence.key)

        if current is None:
            plan.to_insert.append(wanted)
        elif current.differs_from(wanted):
            plan.to_update.append(
                replace(
                    wanted,
                    id=current.id,
                    reminders=list(current.reminders),
                )
            )

    if allow_deletes:
        for key, event in canonical.items():
            if key not in desired_keys:
                plan.to_delete.append(event)
        plan.to_delete.extend(duplicates)
    elif duplicates:
        logger.info(
            f"Leaving {len(duplicates)} duplicate event(s) for the next full sync"
        )

    return plan
