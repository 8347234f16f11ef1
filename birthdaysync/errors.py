"""Exceptions raised by the sync engine and its collaborators."""

from typing import Optional


class BirthdaySyncError(Exception):
    """Base exception for birthday sync errors."""


class MalformedBirthDate(BirthdaySyncError):
    """A directory record carries a birth date that is not a valid calendar day."""

    def __init__(self, raw: object, reason: str, person_key: Optional[str] = None):
        self.raw = raw
        self.reason = reason
        self.person_key = person_key
        who = f" for person {person_key}" if person_key else ""
        super().__init__(f"Malformed birth date {raw!r}{who}: {reason}")


class StoreError(BirthdaySyncError):
    """Base class for calendar store failures."""


class StoreUnavailable(StoreError):
    """The calendar store cannot be reached or access was revoked."""


class BatchTooLarge(StoreError):
    """A batch exceeds the store's transactional size limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Batch of {size} operations exceeds store limit of {limit}")


class BatchRejected(StoreError):
    """The store refused a batch; nothing from it was committed."""


class AmbiguousMatch(BirthdaySyncError):
    """Several stored events claim the same person and year."""

    def __init__(self, person_key: str, year: int, event_ids: list[int]):
        self.person_key = person_key
        self.year = year
        self.event_ids = event_ids
        super().__init__(
            f"{len(event_ids)} events found for person {person_key} in {year}: {event_ids}"
        )


class SyncInProgress(BirthdaySyncError):
    """Another sync pass already holds the in-flight guard."""
