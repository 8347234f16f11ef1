"""Tests for birthday expansion into all-day occurrences."""

from datetime import date, datetime, timedelta, timezone

import pytest

from birthdaysync.sync.birthdate import BirthDate, LeapDayPolicy
from birthdaysync.sync.expander import (
    all_day_start,
    expand,
    from_epoch_millis,
    horizon_years,
    next_occurrence_on_or_after,
    occurrence_on,
    to_epoch_millis,
)


def test_expand_covers_every_year_of_horizon():
    occurrences = expand(BirthDate(7, 4), 2, 5, date(2024, 1, 1), person_key="p1")

    assert sorted(o.year for o in occurrences) == list(range(2022, 2030))
    for occurrence in occurrences:
        assert occurrence.start == datetime(occurrence.year, 7, 4, tzinfo=timezone.utc)
        assert occurrence.end - occurrence.start == timedelta(days=1)
        assert occurrence.all_day
        assert occurrence.person_key == "p1"


def test_expand_ignores_birth_year():
    with_year = expand(BirthDate(7, 4, 1990), 1, 1, date(2024, 1, 1))
    without_year = expand(BirthDate(7, 4), 1, 1, date(2024, 1, 1))
    assert {o.start for o in with_year} == {o.start for o in without_year}


def test_expand_zero_horizon_is_current_year_only():
    occurrences = expand(BirthDate(12, 25), 0, 0, date(2024, 6, 1))
    assert [o.year for o in occurrences] == [2024]


def test_negative_horizon_is_rejected():
    with pytest.raises(ValueError):
        horizon_years(date(2024, 1, 1), -1, 2)


@pytest.mark.parametrize(
    "policy,expected_days",
    [
        (LeapDayPolicy.FEB_28, {2023: 28, 2024: 29, 2025: 28, 2026: 28}),
        (LeapDayPolicy.SKIP, {2024: 29}),
    ],
)
def test_leap_day_expansion(policy, expected_days):
    occurrences = expand(BirthDate(2, 29, 2000), 1, 2, date(2024, 6, 1), leap_day_policy=policy)

    assert {o.year: o.start.day for o in occurrences} == expected_days
    assert all(o.start.month == 2 for o in occurrences)


def test_leap_day_expansion_is_deterministic():
    first = expand(BirthDate(2, 29), 1, 5, date(2024, 6, 1))
    second = expand(BirthDate(2, 29), 1, 5, date(2024, 6, 1))
    assert sorted(o.start for o in first) == sorted(o.start for o in second)


def test_all_day_start_labels_midnight_utc():
    start = all_day_start(date(2024, 7, 4))
    assert start.utcoffset() == timedelta(0)
    assert (start.hour, start.minute, start.second) == (0, 0, 0)
    assert to_epoch_millis(start) == 1720051200000


def test_epoch_millis_round_trip_in_utc():
    start = all_day_start(date(2024, 7, 4))
    assert from_epoch_millis(to_epoch_millis(start)) == start


def test_from_epoch_millis_uses_event_zone():
    instant = from_epoch_millis(1720051200000, "America/New_York")
    assert instant == all_day_start(date(2024, 7, 4))
    assert instant.day == 3


def test_from_epoch_millis_unknown_zone_falls_back_to_utc():
    instant = from_epoch_millis(1720051200000, "Not/A_Zone")
    assert instant.utcoffset() == timedelta(0)


def test_occurrence_identity_is_person_and_year():
    first = occurrence_on(date(2024, 7, 4), "p1")
    moved = occurrence_on(date(2024, 7, 5), "p1")
    assert first == moved
    assert len({first, moved}) == 1
    assert first != occurrence_on(date(2024, 7, 4), "p2")


def test_next_occurrence_on_or_after():
    occurrence = next_occurrence_on_or_after(BirthDate(1, 15), date(2024, 3, 1), "p1")
    assert occurrence.year == 2025
    assert occurrence.start == datetime(2025, 1, 15, tzinfo=timezone.utc)
