"""
Translation of reconciliation plans into ordered store operations.

An inserted event's reminders cannot name the event by id before the batch
commits, so each Reminder Insert carries the position of its Event Insert
within the same SyncBatch. The store resolves those positions on apply.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterator, Optional, Sequence

from birthdaysync.sync.expander import to_epoch_millis
from birthdaysync.sync.models import CalendarEvent, ReconciliationPlan, Reminder

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class EntityKind(str, Enum):
    EVENT = "event"
    REMINDER = "reminder"


@dataclass(frozen=True)
class Operation:
    """A single store mutation inside a SyncBatch."""

    type: OperationType
    kind: EntityKind
    values: dict = field(default_factory=dict)
    target_id: Optional[int] = None
    # Batch-local index of the Event Insert this Reminder Insert belongs to
    back_reference: Optional[int] = None

    @classmethod
    def insert_event(cls, values: dict) -> "Operation":
        return cls(OperationType.INSERT, EntityKind.EVENT, values)

    @classmethod
    def insert_reminder(cls, values: dict, back_reference: int) -> "Operation":
        return cls(
            OperationType.INSERT, EntityKind.REMINDER, values, back_reference=back_reference
        )

    @classmethod
    def update_event(cls, event_id: int, values: dict) -> "Operation":
        return cls(OperationType.UPDATE, EntityKind.EVENT, values, target_id=event_id)

    @classmethod
    def delete_event(cls, event_id: int) -> "Operation":
        return cls(OperationType.DELETE, EntityKind.EVENT, target_id=event_id)

    @classmethod
    def delete_reminder(cls, reminder_id: int) -> "Operation":
        return cls(OperationType.DELETE, EntityKind.REMINDER, target_id=reminder_id)


@dataclass
class SyncBatch:
    """Ordered operations applied by the store as one atomic unit."""

    operations: list[Operation] = field(default_factory=list)
    # Start index of each unit that must stay together (event + reminders)
    unit_starts: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __getitem__(self, index: int) -> Operation:
        return self.operations[index]

    def begin_unit(self) -> None:
        self.unit_starts.append(len(self.operations))

    def append(self, operation: Operation) -> int:
        """Append an operation and return its batch-local index."""
        self.operations.append(operation)
        return len(self.operations) - 1

    def units(self) -> list[list[Operation]]:
        """Operation units with back-references relative to their unit start."""
        bounds = self.unit_starts + [len(self.operations)]
        result = []
        for start, stop in zip(bounds, bounds[1:]):
            unit = []
            for operation in self.operations[start:stop]:
                if operation.back_reference is not None:
                    operation = replace(
                        operation, back_reference=operation.back_reference - start
                    )
                unit.append(operation)
            result.append(unit)
        return result

    def count(self, op_type: OperationType, kind: EntityKind) -> int:
        return sum(1 for op in self.operations if op.type is op_type and op.kind is kind)


def event_values(event: CalendarEvent, calendar_id: Optional[int] = None) -> dict:
    """Store columns for an event."""
    values = {
        "title": event.title,
        "description": event.description,
        "dtstart": to_epoch_millis(event.start),
        "dtend": to_epoch_millis(event.end),
        "event_timezone": event.timezone,
        "all_day": event.all_day,
        "person_key": event.person_key,
    }
    if calendar_id is not None:
        values["calendar_id"] = calendar_id
    return values


def reminder_values(reminder: Reminder) -> dict:
    return {"minutes": reminder.minutes, "method": reminder.method}


class BatchBuilder:
    """
    Accumulates plans for many people into size-bounded SyncBatches.

    An inserted event and its reminders always land in the same sub-batch.

    By default ``max_operations`` is a soft ceiling: a new sub-batch starts
    once the current one has reached it, so a sub-batch may exceed it by up
    to one unit (6 operations at a ceiling of 5 for events with two
    reminders). With ``strict=True`` a unit that would overflow the current
    sub-batch starts a new one, and only a single unit larger than the
    ceiling can exceed it.
    """

    def __init__(self, calendar_id: int, max_operations: int, strict: bool = False):
        if max_operations < 1:
            raise ValueError("max_operations must be at least 1")
        self.calendar_id = calendar_id
        self.max_operations = max_operations
        self.strict = strict
        self._batches: list[SyncBatch] = []
        self._current = SyncBatch()

    @property
    def batches(self) -> list[SyncBatch]:
        batches = list(self._batches)
        if self._current.operations:
            batches.append(self._current)
        return batches

    @property
    def operation_count(self) -> int:
        return sum(len(batch) for batch in self.batches)

    def _batch_for_next_unit(self, size: int = 1) -> SyncBatch:
        if self.strict:
            full = len(self._current) + size > self.max_operations
        else:
            full = len(self._current) >= self.max_operations
        if full and self._current.operations:
            self._batches.append(self._current)
            self._current = SyncBatch()
        self._current.begin_unit()
        return self._current

    def add_insert(self, event: CalendarEvent) -> None:
        batch = self._batch_for_next_unit(1 + len(event.reminders))
        values = event_values(event, self.calendar_id)
        values["status"] = "confirmed"
        values["availability"] = "free"
        values["has_alarm"] = bool(event.reminders)

        event_index = batch.append(Operation.insert_event(values))
        for reminder in event.reminders:
            batch.append(Operation.insert_reminder(reminder_values(reminder), event_index))

    def add_update(self, event: CalendarEvent) -> None:
        batch = self._batch_for_next_unit()
        batch.append(Operation.update_event(event.id, event_values(event)))

    def add_delete(self, event: CalendarEvent) -> None:
        batch = self._batch_for_next_unit(
            1 + sum(1 for reminder in event.reminders if reminder.id is not None)
        )
        # Reminders reference their event, so they go first.
        for reminder in event.reminders:
            if reminder.id is not None:
                batch.append(Operation.delete_reminder(reminder.id))
        batch.append(Operation.delete_event(event.id))

    def add_unit(self, unit: Sequence[Operation]) -> None:
        """Re-add a unit taken from another batch (back-references unit-relative)."""
        batch = self._batch_for_next_unit(len(unit))
        base = len(batch)
        for operation in unit:
            if operation.back_reference is not None:
                operation = replace(operation, back_reference=base + operation.back_reference)
            batch.append(operation)

    def add_plan(self, plan: ReconciliationPlan) -> None:
        for event in plan.to_insert:
            self.add_insert(event)
        for event in plan.to_update:
            self.add_update(event)
        for event in plan.to_delete:
            self.add_delete(event)


def build(
    plan: ReconciliationPlan,
    calendar_id: int,
    max_operations: int,
) -> list[SyncBatch]:
    """Ordered SyncBatches for a single plan."""
    builder = BatchBuilder(calendar_id, max_operations)
    builder.add_plan(plan)
    return builder.batches


def split_batch(batch: SyncBatch, max_operations: int) -> list[SyncBatch]:
    """
    Re-split a batch into batches of at most ``max_operations`` without
    separating any unit. A unit larger than the ceiling gets a batch of its own.
    """
    builder = BatchBuilder(calendar_id=0, max_operations=max_operations, strict=True)
    for unit in batch.units():
        builder.add_unit(unit)
    logger.debug(
        f"Split batch of {len(batch)} operations into {len(builder.batches)} "
        f"(ceiling {max_operations})"
    )
    return builder.batches
