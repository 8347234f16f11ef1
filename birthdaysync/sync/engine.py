"""Core sync engine: full and single-person birthday passes."""

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from functools import partial
from typing import Callable, Iterable, Optional

from birthdaysync.config import Settings, get_settings, parse_reminder_minutes
from birthdaysync.database import get_database, is_sync_paused
from birthdaysync.errors import (
    BatchTooLarge,
    MalformedBirthDate,
    StoreError,
    SyncInProgress,
)
from birthdaysync.sync.batch import BatchBuilder, SyncBatch, split_batch
from birthdaysync.sync.birthdate import BirthDate, LeapDayPolicy
from birthdaysync.sync.directory import Directory, SQLiteDirectory
from birthdaysync.sync.expander import expand, expand_years, next_occurrence_on_or_after
from birthdaysync.sync.linkage import EventLinkage, get_linkage
from birthdaysync.sync.models import Occurrence, Person, ReconciliationPlan
from birthdaysync.sync.reader import StoreReader
from birthdaysync.sync.reconciler import reconcile
from birthdaysync.sync.reminders import BirthdayEventFactory, ReminderTemplate
from birthdaysync.sync.store import CalendarStore, SQLiteCalendarStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    mode: str
    person_key: Optional[str] = None
    status: str = "success"
    people_processed: int = 0
    skipped: list[dict] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    ambiguous: int = 0
    operations: int = 0
    batches_total: int = 0
    batches_committed: int = 0
    error: Optional[str] = None

    def skip(self, error: MalformedBirthDate) -> None:
        logger.warning(f"Skipping person {error.person_key}: {error}")
        self.skipped.append({"person_key": error.person_key, "reason": str(error)})

    def add_plan(self, plan: ReconciliationPlan) -> None:
        self.inserted += len(plan.to_insert)
        self.updated += len(plan.to_update)
        self.deleted += len(plan.to_delete)
        self.ambiguous += len(plan.ambiguous)

    def to_dict(self) -> dict:
        return asdict(self)


class SyncOrchestrator:
    """
    Drives reconciliation between the directory and the calendar store.

    Only one pass runs at a time; the "already exists" checks are only
    correct against a store that no other pass is writing to.
    """

    def __init__(
        self,
        directory: Directory,
        store: CalendarStore,
        settings: Optional[Settings] = None,
        linkage: Optional[EventLinkage] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.directory = directory
        self.store = store
        self.settings = settings or get_settings()
        self.linkage = linkage or get_linkage(self.settings.linkage)
        self.leap_day_policy = LeapDayPolicy(self.settings.leap_day_policy)
        self.template = ReminderTemplate(
            offsets=parse_reminder_minutes(self.settings.default_reminder_minutes)
        )
        self.factory = BirthdayEventFactory(self.template, self.settings.event_title_template)
        self._today = today or date.today
        self._lock = asyncio.Lock()
        self._calendar_id: Optional[int] = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _exclusive(self, mode: str):
        if self._lock.locked():
            raise SyncInProgress(f"A sync pass is already running, refusing {mode} sync")
        async with self._lock:
            yield

    async def _reader(self) -> StoreReader:
        if self._calendar_id is None:
            self._calendar_id = await self.store.get_or_create_calendar(
                self.settings.calendar_name
            )
        return StoreReader(self.store, self._calendar_id, self.linkage)

    async def _plan_person(
        self,
        reader: StoreReader,
        person: Person,
        desired: set[Occurrence],
        allow_deletes: bool,
        extra_instants: Iterable[datetime] = (),
    ) -> ReconciliationPlan:
        candidates = [occurrence.start for occurrence in desired]
        candidates.extend(extra_instants)
        existing = await reader.find_existing(person, candidates)
        return reconcile(
            desired,
            existing,
            partial(self.factory.build, person),
            allow_deletes=allow_deletes,
        )

    async def sync_all(self) -> SyncReport:
        """Full pass over every person with a birthday, across the whole horizon."""
        async with self._exclusive("full"):
            report = SyncReport(mode="full")

            async def plan(reader: StoreReader, builder: BatchBuilder) -> None:
                today = self._today()
                people = await self.directory.list_people_with_birthday(
                    on_malformed=report.skip
                )
                logger.info(f"Running full birthday sync for {len(people)} people")

                for person in people:
                    desired = expand(
                        person.birth_date,
                        self.settings.horizon_years_past,
                        self.settings.horizon_years_future,
                        today,
                        person_key=person.key,
                        leap_day_policy=self.leap_day_policy,
                    )
                    person_plan = await self._plan_person(
                        reader, person, desired, allow_deletes=True
                    )
                    report.people_processed += 1
                    report.add_plan(person_plan)
                    builder.add_plan(person_plan)

            return await self._run(report, plan)

    async def sync_one(
        self,
        person_key: str,
        previous_birth_date: Optional[BirthDate] = None,
    ) -> SyncReport:
        """
        Narrow pass for one person after their birthday was added or edited.

        Covers the next occurrence and ``narrow_horizon_years`` after it, and
        never deletes. With ``previous_birth_date``, events still sitting on
        the old date inside that window are moved instead of duplicated.
        """
        async with self._exclusive("narrow"):
            report = SyncReport(mode="narrow", person_key=person_key)

            async def plan(reader: StoreReader, builder: BatchBuilder) -> None:
                try:
                    person = await self.directory.get_person(person_key)
                except MalformedBirthDate as e:
                    report.skip(e)
                    return

                if person is None or person.birth_date is None:
                    logger.info(f"Person {person_key} has no birthday, nothing to sync")
                    return

                today = self._today()
                upcoming = next_occurrence_on_or_after(
                    person.birth_date, today, person.key, self.leap_day_policy
                )
                years = range(upcoming.year, upcoming.year + self.settings.narrow_horizon_years + 1)
                desired = expand_years(
                    person.birth_date, years, person.key, self.leap_day_policy
                )

                previous_instants = []
                if previous_birth_date is not None and previous_birth_date != person.birth_date:
                    previous_instants = [
                        occurrence.start
                        for occurrence in expand_years(
                            previous_birth_date, years, person.key, self.leap_day_policy
                        )
                    ]

                person_plan = await self._plan_person(
                    reader,
                    person,
                    desired,
                    allow_deletes=False,
                    extra_instants=previous_instants,
                )
                report.people_processed = 1
                report.add_plan(person_plan)
                builder.add_plan(person_plan)

            return await self._run(report, plan)

    async def remove_person_events(
        self,
        person_key: str,
        birth_date: BirthDate,
        display_name: Optional[str] = None,
    ) -> SyncReport:
        """Delete a person's events across the full horizon (birthday removed)."""
        async with self._exclusive("remove"):
            report = SyncReport(mode="remove", person_key=person_key)

            async def plan(reader: StoreReader, builder: BatchBuilder) -> None:
                name = display_name
                if name is None:
                    person = await self.directory.get_person(person_key)
                    if person is None:
                        raise ValueError(
                            f"Person {person_key} is not in the directory; a display name is required"
                        )
                    name = person.display_name

                target = Person(key=person_key, display_name=name, birth_date=birth_date)
                stored_at = expand(
                    birth_date,
                    self.settings.horizon_years_past,
                    self.settings.horizon_years_future,
                    self._today(),
                    person_key=person_key,
                    leap_day_policy=self.leap_day_policy,
                )
                existing = await reader.find_existing(
                    target, [occurrence.start for occurrence in stored_at]
                )
                person_plan = reconcile(
                    set(), existing, partial(self.factory.build, target), allow_deletes=True
                )
                report.people_processed = 1
                report.add_plan(person_plan)
                builder.add_plan(person_plan)

            return await self._run(report, plan)

    async def _run(self, report: SyncReport, plan) -> SyncReport:
        try:
            reader = await self._reader()
            builder = BatchBuilder(reader.calendar_id, self.settings.max_batch_operations)
            await plan(reader, builder)

            batches = builder.batches
            report.operations = builder.operation_count
            report.batches_total = len(batches)
            await self._submit(batches, report)
        except StoreError as e:
            report.status = "failure"
            report.error = str(e)
            logger.exception(f"{report.mode.capitalize()} sync failed: {e}")
            try:
                await self._record(report)
            except sqlite3.Error as record_error:
                logger.error(f"Could not record failed sync: {record_error}")
            raise

        await self._record(report)
        logger.info(
            f"{report.mode.capitalize()} sync {report.status}: "
            f"{report.inserted} inserted, {report.updated} updated, {report.deleted} deleted, "
            f"{report.batches_committed}/{report.batches_total} batches, "
            f"{len(report.skipped)} skipped"
        )
        return report

    async def _submit(self, batches: list[SyncBatch], report: SyncReport) -> None:
        """Apply sub-batches in order, each committed before the next is sent."""
        pending = list(batches)
        while pending:
            if await is_sync_paused():
                report.status = "aborted"
                logger.warning(
                    f"Sync paused mid-pass; {len(pending)} batch(es) left for the next run"
                )
                return

            batch = pending.pop(0)
            try:
                results = await self.store.apply_batch(batch)
            except BatchTooLarge as e:
                if len(batch.units()) <= 1:
                    raise
                ceiling = max(1, min(e.limit, len(batch) // 2))
                smaller = split_batch(batch, ceiling)
                if len(smaller) < 2:
                    # one unit per batch always makes progress
                    smaller = split_batch(batch, 1)
                logger.info(
                    f"Store refused {len(batch)} operations (limit {e.limit}); "
                    f"retrying as {len(smaller)} smaller batches"
                )
                pending[0:0] = smaller
                report.batches_total += len(smaller) - 1
                continue

            report.batches_committed += 1
            logger.debug(f"Committed batch of {len(batch)} operations ({len(results)} results)")

    async def _record(self, report: SyncReport) -> None:
        db = await get_database()
        now = datetime.utcnow().isoformat()

        if report.status == "failure":
            await db.execute(
                """UPDATE sync_state SET
                   consecutive_failures = consecutive_failures + 1,
                   last_error = ?
                   WHERE id = 1""",
                (report.error,)
            )
        elif report.status == "success":
            column = "last_full_sync" if report.mode == "full" else "last_narrow_sync"
            await db.execute(
                f"""UPDATE sync_state SET
                    {column} = ?, consecutive_failures = 0, last_error = NULL
                    WHERE id = 1""",
                (now,)
            )

        await db.execute(
            """INSERT INTO sync_log (person_key, action, status, details)
               VALUES (?, ?, ?, ?)""",
            (
                report.person_key,
                f"sync_{report.mode}",
                report.status,
                json.dumps(report.to_dict()),
            )
        )
        await db.commit()


_orchestrator: Optional[SyncOrchestrator] = None


async def get_orchestrator() -> SyncOrchestrator:
    """Process-wide orchestrator backed by the service database."""
    global _orchestrator

    if _orchestrator is None:
        settings = get_settings()
        db = await get_database()
        _orchestrator = SyncOrchestrator(
            SQLiteDirectory(db),
            SQLiteCalendarStore(db, settings.store_max_batch_operations),
            settings=settings,
        )
    return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None


async def trigger_sync_all() -> Optional[SyncReport]:
    """Run a full sync unless paused or already running."""
    if await is_sync_paused():
        logger.info("Sync is paused, skipping full sync")
        return None

    orchestrator = await get_orchestrator()
    try:
        return await orchestrator.sync_all()
    except SyncInProgress:
        logger.info("Sync already in progress, skipping full sync")
        return None


async def trigger_sync_for_person(
    person_key: str,
    previous_birth_date: Optional[BirthDate] = None,
) -> Optional[SyncReport]:
    """Run a narrow sync for one person unless paused or already running."""
    if await is_sync_paused():
        logger.info(f"Sync is paused, skipping sync for person {person_key}")
        return None

    orchestrator = await get_orchestrator()
    try:
        return await orchestrator.sync_one(person_key, previous_birth_date)
    except SyncInProgress:
        logger.info(f"Sync already in progress, skipping sync for person {person_key}")
        return None
