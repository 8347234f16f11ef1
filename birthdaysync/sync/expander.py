"""Expansion of a recurring birthday into dated all-day occurrences."""

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from birthdaysync.sync.birthdate import BirthDate, LeapDayPolicy
from birthdaysync.sync.models import Occurrence

ALL_DAY_TIMEZONE = "UTC"


def all_day_start(day: date) -> datetime:
    """
    Start instant of an all-day event on ``day``.

    The local wall-clock midnight is kept as-is and labelled UTC; this is not
    a timezone conversion. Stores display all-day events in UTC, so any other
    transform shifts the event by a day for some viewers.
    """
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def to_epoch_millis(instant: datetime) -> int:
    return round(instant.timestamp() * 1000)


def from_epoch_millis(millis: int, tz_id: Optional[str] = ALL_DAY_TIMEZONE) -> datetime:
    """Instant stored as epoch milliseconds, expressed in the event's zone."""
    instant = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    if not tz_id or tz_id == ALL_DAY_TIMEZONE:
        return instant
    try:
        return instant.astimezone(ZoneInfo(tz_id))
    except (ZoneInfoNotFoundError, ValueError):
        return instant


def occurrence_on(day: date, person_key: Optional[str] = None) -> Occurrence:
    """All-day occurrence covering exactly one civil day."""
    start = all_day_start(day)
    return Occurrence(
        person_key=person_key,
        year=day.year,
        start=start,
        end=start + timedelta(days=1),
        all_day=True,
    )


def horizon_years(today: date, horizon_past: int, horizon_future: int) -> range:
    if horizon_past < 0 or horizon_future < 0:
        raise ValueError("Horizon bounds must not be negative")
    return range(today.year - horizon_past, today.year + horizon_future + 1)


def expand_years(
    birth_date: BirthDate,
    years: Iterable[int],
    person_key: Optional[str] = None,
    leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
) -> set[Occurrence]:
    occurrences = set()
    for year in years:
        day = birth_date.date_for_year(year, leap_day_policy)
        if day is not None:
            occurrences.add(occurrence_on(day, person_key))
    return occurrences


def expand(
    birth_date: BirthDate,
    horizon_past: int,
    horizon_future: int,
    today: date,
    person_key: Optional[str] = None,
    leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
) -> set[Occurrence]:
    """
    Occurrences of ``birth_date`` for every year of the horizon around ``today``.

    Only month and day drive the recurrence; a known birth year is ignored.
    """
    return expand_years(
        birth_date,
        horizon_years(today, horizon_past, horizon_future),
        person_key=person_key,
        leap_day_policy=leap_day_policy,
    )


def next_occurrence_on_or_after(
    birth_date: BirthDate,
    today: date,
    person_key: Optional[str] = None,
    leap_day_policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
) -> Occurrence:
    """The nearest occurrence falling today or later."""
    return occurrence_on(
        birth_date.next_occurrence_on_or_after(today, leap_day_policy),
        person_key,
    )
