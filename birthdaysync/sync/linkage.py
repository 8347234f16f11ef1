"""Strategies that associate stored calendar events with a person."""

from typing import Optional, Protocol

from birthdaysync.sync.models import Person


class EventLinkage(Protocol):
    """How the store reader finds a person's events."""

    name: str

    def query_filter(self, person: Person) -> dict:
        """Keyword arguments narrowing the store query to this person."""
        ...

    def matches(self, person: Person, row: dict) -> bool:
        """Whether a stored event row belongs to this person."""
        ...


class TitleLinkage:
    """
    Match events whose title contains the person's display name.

    The store has no join between events and people, so an unrelated event
    with the same name on the same day is indistinguishable from a match.
    """

    name = "title"

    def query_filter(self, person: Person) -> dict:
        return {"title_contains": person.display_name}

    def matches(self, person: Person, row: dict) -> bool:
        title = row.get("title") or ""
        return person.display_name.lower() in title.lower()


class PersonKeyLinkage:
    """Match events by the person key stored alongside each event."""

    name = "person_key"

    def query_filter(self, person: Person) -> dict:
        return {"person_key": person.key}

    def matches(self, person: Person, row: dict) -> bool:
        return row.get("person_key") == person.key


_LINKAGES = {
    TitleLinkage.name: TitleLinkage,
    PersonKeyLinkage.name: PersonKeyLinkage,
}


def get_linkage(name: Optional[str]) -> EventLinkage:
    """Resolve a configured linkage name."""
    key = (name or TitleLinkage.name).strip().lower()
    if key not in _LINKAGES:
        raise ValueError(f"Unknown event linkage '{name}'")
    return _LINKAGES[key]()
