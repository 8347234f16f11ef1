"""Tests for batch construction, ordering and back-references."""

from datetime import date

import pytest

from birthdaysync.sync.batch import (
    BatchBuilder,
    EntityKind,
    OperationType,
    build,
    split_batch,
)
from birthdaysync.sync.expander import occurrence_on
from birthdaysync.sync.models import CalendarEvent, Person, ReconciliationPlan, Reminder
from birthdaysync.sync.reminders import BirthdayEventFactory, ReminderTemplate

ALICE = Person(key="alice", display_name="Alice")


def _new_event(year: int) -> CalendarEvent:
    factory = BirthdayEventFactory(ReminderTemplate(offsets=(0, 1440)), "{name}'s birthday")
    return factory.build(ALICE, occurrence_on(date(year, 7, 4), ALICE.key))


def _stored_event(event_id: int, reminder_ids=()) -> CalendarEvent:
    event = _new_event(2020)
    event.id = event_id
    event.reminders = [Reminder(minutes=0, id=rid, event_id=event_id) for rid in reminder_ids]
    return event


def _insert_plan(count: int) -> ReconciliationPlan:
    return ReconciliationPlan(to_insert=[_new_event(2024 + i) for i in range(count)])


def test_inserts_with_reminders_reference_their_event():
    batches = build(_insert_plan(3), calendar_id=1, max_operations=200)

    assert len(batches) == 1
    batch = batches[0]
    assert len(batch) == 9
    assert batch.count(OperationType.INSERT, EntityKind.EVENT) == 3
    assert batch.count(OperationType.INSERT, EntityKind.REMINDER) == 6

    for index, operation in enumerate(batch):
        if operation.kind is EntityKind.REMINDER:
            target = batch[operation.back_reference]
            assert operation.back_reference < index
            assert target.type is OperationType.INSERT
            assert target.kind is EntityKind.EVENT
    assert [op.back_reference for op in batch if op.kind is EntityKind.REMINDER] == [
        0, 0, 3, 3, 6, 6,
    ]


def test_inserted_event_values():
    batch = build(_insert_plan(1), calendar_id=5, max_operations=200)[0]
    values = batch[0].values

    assert values["calendar_id"] == 5
    assert values["all_day"] is True
    assert values["event_timezone"] == "UTC"
    assert values["dtend"] - values["dtstart"] == 86_400_000
    assert values["status"] == "confirmed"
    assert values["availability"] == "free"
    assert values["has_alarm"] is True
    assert [op.values["minutes"] for op in batch if op.kind is EntityKind.REMINDER] == [0, 1440]


def test_event_without_reminders_has_no_alarm():
    event = _new_event(2024)
    event.reminders = []
    batch = build(ReconciliationPlan(to_insert=[event]), calendar_id=1, max_operations=10)[0]

    assert len(batch) == 1
    assert batch[0].values["has_alarm"] is False


def test_ceiling_splits_between_units_only():
    batches = build(_insert_plan(3), calendar_id=1, max_operations=5)

    assert [len(batch) for batch in batches] == [6, 3]
    for batch in batches:
        for index, operation in enumerate(batch):
            if operation.back_reference is not None:
                assert 0 <= operation.back_reference < index
                assert batch[operation.back_reference].kind is EntityKind.EVENT
    assert [op.back_reference for op in batches[1] if op.back_reference is not None] == [0, 0]


def test_reminder_deletes_precede_event_delete():
    plan = ReconciliationPlan(to_delete=[_stored_event(7, reminder_ids=(70, 71))])
    batch = build(plan, calendar_id=1, max_operations=200)[0]

    assert [(op.type, op.kind, op.target_id) for op in batch] == [
        (OperationType.DELETE, EntityKind.REMINDER, 70),
        (OperationType.DELETE, EntityKind.REMINDER, 71),
        (OperationType.DELETE, EntityKind.EVENT, 7),
    ]


def test_plan_order_is_inserts_updates_deletes():
    plan = ReconciliationPlan(
        to_insert=[_new_event(2024)],
        to_update=[_stored_event(3)],
        to_delete=[_stored_event(4)],
    )
    batch = build(plan, calendar_id=1, max_operations=200)[0]

    assert [(op.type, op.kind) for op in batch] == [
        (OperationType.INSERT, EntityKind.EVENT),
        (OperationType.INSERT, EntityKind.REMINDER),
        (OperationType.INSERT, EntityKind.REMINDER),
        (OperationType.UPDATE, EntityKind.EVENT),
        (OperationType.DELETE, EntityKind.EVENT),
    ]
    update = batch[3]
    assert update.target_id == 3
    assert "calendar_id" not in update.values


def test_empty_plan_builds_no_batches():
    assert build(ReconciliationPlan(), calendar_id=1, max_operations=10) == []


def test_ceiling_must_be_positive():
    with pytest.raises(ValueError):
        BatchBuilder(calendar_id=1, max_operations=0)


def test_builder_accumulates_plans_for_many_people():
    builder = BatchBuilder(calendar_id=1, max_operations=4)
    builder.add_plan(_insert_plan(1))
    builder.add_plan(_insert_plan(1))

    assert builder.operation_count == 6
    assert [len(batch) for batch in builder.batches] == [6]


def test_split_batch_rebases_back_references():
    batch = build(_insert_plan(3), calendar_id=1, max_operations=200)[0]

    smaller = split_batch(batch, 3)

    assert [len(part) for part in smaller] == [3, 3, 3]
    for part in smaller:
        assert [op.back_reference for op in part] == [None, 0, 0]
    assert sum(len(part) for part in smaller) == len(batch)


def test_units_are_relative_to_their_start():
    batch = build(_insert_plan(2), calendar_id=1, max_operations=200)[0]

    units = batch.units()

    assert len(units) == 2
    assert [op.back_reference for op in units[1]] == [None, 0, 0]


def test_split_batch_separates_small_unit_ahead_of_large_one():
    big = _new_event(2024)
    big.reminders = [Reminder(minutes=m) for m in (0, 60, 120, 1440)]
    builder = BatchBuilder(calendar_id=1, max_operations=200)
    builder.add_update(_stored_event(3))
    builder.add_insert(big)
    batch = builder.batches[0]
    assert len(batch) == 6

    smaller = split_batch(batch, 3)

    assert [len(part) for part in smaller] == [1, 5]
    assert smaller[0][0].type is OperationType.UPDATE
    assert [op.back_reference for op in smaller[1]] == [None, 0, 0, 0, 0]


def test_strict_builder_never_overflows_with_several_units():
    builder = BatchBuilder(calendar_id=1, max_operations=5, strict=True)
    builder.add_plan(_insert_plan(3))

    assert [len(batch) for batch in builder.batches] == [3, 3, 3]
