"""Sync status and control API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from birthdaysync.config import get_settings
from birthdaysync.database import get_database, is_sync_paused, set_setting
from birthdaysync.errors import MalformedBirthDate, StoreError, SyncInProgress
from birthdaysync.sync.birthdate import BirthDate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])


class SyncStatusResponse(BaseModel):
    """Overall sync status."""
    last_full_sync: Optional[str] = None
    last_narrow_sync: Optional[str] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    events_managed: int
    sync_in_progress: bool = False
    sync_paused: bool = False


class SyncLogEntry(BaseModel):
    """Sync log entry."""
    id: int
    person_key: Optional[str] = None
    action: str
    status: str
    details: Optional[str] = None
    created_at: str


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLogEntry]
    total: int
    page: int
    page_size: int


class PersonSyncRequest(BaseModel):
    """Optional body for a single-person sync after a birthday edit."""
    previous_birthday: Optional[str] = None


class RemoveEventsRequest(BaseModel):
    """Birthday whose events should be removed, as it was before the removal."""
    birthday: str
    display_name: Optional[str] = None


class SyncReportResponse(BaseModel):
    """Result of a completed sync pass."""
    mode: str
    person_key: Optional[str] = None
    status: str
    people_processed: int
    skipped: list[dict]
    inserted: int
    updated: int
    deleted: int
    ambiguous: int
    operations: int
    batches_total: int
    batches_committed: int
    error: Optional[str] = None


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status():
    """Get overall sync status."""
    db = await get_database()

    cursor = await db.execute("SELECT * FROM sync_state WHERE id = 1")
    state = await cursor.fetchone()

    cursor = await db.execute(
        """SELECT COUNT(*) FROM events e
           JOIN calendars c ON e.calendar_id = c.id
           WHERE c.name = ?""",
        (get_settings().calendar_name,)
    )
    events_managed = (await cursor.fetchone())[0]

    from birthdaysync.sync.engine import get_orchestrator
    orchestrator = await get_orchestrator()

    return SyncStatusResponse(
        last_full_sync=state["last_full_sync"] if state else None,
        last_narrow_sync=state["last_narrow_sync"] if state else None,
        consecutive_failures=(state["consecutive_failures"] or 0) if state else 0,
        last_error=state["last_error"] if state else None,
        events_managed=events_managed,
        sync_in_progress=orchestrator.in_progress,
        sync_paused=await is_sync_paused(),
    )


@router.get("/log", response_model=SyncLogResponse)
async def get_sync_log(
    page: int = 1,
    page_size: int = 50,
    person_key: Optional[str] = None,
    status_filter: Optional[str] = None,
):
    """Get sync activity log."""
    db = await get_database()

    query = "SELECT * FROM sync_log WHERE 1 = 1"
    params = []

    if person_key:
        query += " AND person_key = ?"
        params.append(person_key)

    if status_filter:
        query += " AND status = ?"
        params.append(status_filter)

    count_query = query.replace("SELECT *", "SELECT COUNT(*)", 1)
    cursor = await db.execute(count_query, params)
    total = (await cursor.fetchone())[0]

    query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([page_size, (page - 1) * page_size])

    cursor = await db.execute(query, params)
    rows = await cursor.fetchall()

    entries = [
        SyncLogEntry(
            id=row["id"],
            person_key=row["person_key"],
            action=row["action"],
            status=row["status"],
            details=row["details"],
            created_at=row["created_at"],
        )
        for row in rows
    ]

    return SyncLogResponse(
        entries=entries,
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/full")
async def trigger_full_sync():
    """Trigger a full birthday sync in the background."""
    if await is_sync_paused():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sync is paused",
        )

    from birthdaysync.sync.engine import trigger_sync_all
    from birthdaysync.utils.tasks import create_background_task
    create_background_task(trigger_sync_all(), "full_birthday_sync")

    return {"status": "ok", "message": "Full sync triggered"}


@router.post("/people/{person_key}", response_model=SyncReportResponse)
async def sync_person(person_key: str, request: Optional[PersonSyncRequest] = None):
    """Make sure a person's upcoming birthday events exist, e.g. right after an edit."""
    previous = None
    if request and request.previous_birthday:
        try:
            previous = BirthDate.parse(request.previous_birthday, person_key=person_key)
        except MalformedBirthDate as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(e),
            )

    if await is_sync_paused():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sync is paused",
        )

    from birthdaysync.sync.engine import get_orchestrator
    orchestrator = await get_orchestrator()

    try:
        report = await orchestrator.sync_one(person_key, previous)
    except SyncInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return SyncReportResponse(**report.to_dict())


@router.post("/people/{person_key}/remove", response_model=SyncReportResponse)
async def remove_person_events(person_key: str, request: RemoveEventsRequest):
    """Delete a person's birthday events across the horizon after their birthday was removed."""
    try:
        birth_date = BirthDate.parse(request.birthday, person_key=person_key)
    except MalformedBirthDate as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    if await is_sync_paused():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sync is paused",
        )

    from birthdaysync.sync.engine import get_orchestrator
    orchestrator = await get_orchestrator()

    try:
        report = await orchestrator.remove_person_events(
            person_key, birth_date, request.display_name
        )
    except SyncInProgress as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return SyncReportResponse(**report.to_dict())


@router.post("/pause")
async def pause_sync():
    """Pause all syncing; a running pass stops before its next batch."""
    await set_setting("sync_paused", "true")
    logger.info("Sync paused")
    return {"status": "ok", "sync_paused": True}


@router.post("/resume")
async def resume_sync():
    """Resume syncing."""
    await set_setting("sync_paused", "false")
    logger.info("Sync resumed")
    return {"status": "ok", "sync_paused": False}
