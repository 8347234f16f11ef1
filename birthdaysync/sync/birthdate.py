"""Recurring birth dates that may omit the year."""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from birthdaysync.errors import MalformedBirthDate

# Any leap year works; used to validate month/day pairs without a year.
_LEAP_REFERENCE_YEAR = 2000

# A leap year always occurs within this many years (2096 -> 2104 is the worst gap).
_MAX_LEAP_GAP = 8

_FULL_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_NO_YEAR_DATE = re.compile(r"^--(\d{1,2})-?(\d{2})$")


class LeapDayPolicy(str, Enum):
    """What to do with a Feb 29 birthday in a non-leap year."""

    FEB_28 = "feb28"
    SKIP = "skip"


@dataclass(frozen=True)
class BirthDate:
    """Month and day of a birthday, with the birth year when it is known."""

    month: int
    day: int
    year: Optional[int] = None

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise MalformedBirthDate(self.isoformat(), f"month {self.month} out of range")

        reference_year = self.year if self.year is not None else _LEAP_REFERENCE_YEAR
        if self.year is not None and not 1 <= self.year <= 9999:
            raise MalformedBirthDate(self.isoformat(), f"year {self.year} out of range")

        days_in_month = calendar.monthrange(reference_year, self.month)[1]
        if not 1 <= self.day <= days_in_month:
            raise MalformedBirthDate(
                self.isoformat(),
                f"day {self.day} is not valid for month {self.month}",
            )

    @classmethod
    def parse(
        cls,
        raw: Union[str, date, datetime, None],
        person_key: Optional[str] = None,
    ) -> "BirthDate":
        """
        Parse a raw directory value.

        Accepts ``YYYY-MM-DD``, the year-less ``--MM-DD`` / ``--MMDD`` forms,
        and ``date``/``datetime`` objects (time of day is ignored).
        """
        if isinstance(raw, datetime):
            raw = raw.date()
        if isinstance(raw, date):
            return cls(raw.month, raw.day, raw.year)

        if raw is None or not str(raw).strip():
            raise MalformedBirthDate(raw, "empty value", person_key)

        text = str(raw).strip()
        # Some directories append a time component; only the date matters.
        text = text.split("T", 1)[0].split(" ", 1)[0]

        try:
            match = _FULL_DATE.match(text)
            if match:
                year, month, day = (int(part) for part in match.groups())
                return cls(month, day, year)

            match = _NO_YEAR_DATE.match(text)
            if match:
                month, day = (int(part) for part in match.groups())
                return cls(month, day)
        except MalformedBirthDate as e:
            raise MalformedBirthDate(raw, e.reason, person_key) from e

        raise MalformedBirthDate(raw, "unrecognized format", person_key)

    @property
    def has_year(self) -> bool:
        return self.year is not None

    @property
    def is_leap_day(self) -> bool:
        return self.month == 2 and self.day == 29

    def date_for_year(
        self,
        year: int,
        policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
    ) -> Optional[date]:
        """Concrete date of this birthday in ``year``, or None when the policy skips it."""
        if self.is_leap_day and not calendar.isleap(year):
            if policy is LeapDayPolicy.SKIP:
                return None
            return date(year, 2, 28)
        return date(year, self.month, self.day)

    def next_occurrence_on_or_after(
        self,
        today: date,
        policy: LeapDayPolicy = LeapDayPolicy.FEB_28,
    ) -> date:
        """Nearest occurrence that falls on or after ``today``."""
        for year in range(today.year, today.year + _MAX_LEAP_GAP + 1):
            candidate = self.date_for_year(year, policy)
            if candidate is not None and candidate >= today:
                return candidate
        raise ValueError(f"No occurrence of {self.isoformat()} after {today}")

    def isoformat(self) -> str:
        if self.year is None:
            return f"--{self.month:02d}-{self.day:02d}"
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    def __str__(self) -> str:
        return self.isoformat()
