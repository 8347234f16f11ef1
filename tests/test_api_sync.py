"""Tests for the sync status and control API."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import HTTPException

from birthdaysync.database import get_database, is_sync_paused, set_setting
from birthdaysync.errors import StoreUnavailable


async def _insert_person(person_key: str, display_name: str, birthday: str | None) -> None:
    db = await get_database()
    await db.execute(
        """INSERT INTO people (person_key, display_name, birthday)
           VALUES (?, ?, ?)""",
        (person_key, display_name, birthday),
    )
    await db.commit()


async def _insert_log(person_key: str | None, action: str, status: str) -> None:
    db = await get_database()
    await db.execute(
        """INSERT INTO sync_log (person_key, action, status, details)
           VALUES (?, ?, ?, ?)""",
        (person_key, action, status, "{}"),
    )
    await db.commit()


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "connected"}


@pytest.mark.asyncio
async def test_sync_person_creates_next_occurrence(test_db):
    from birthdaysync.api.sync import get_sync_status, sync_person

    await _insert_person("alice", "Alice", "--07-04")

    report = await sync_person("alice")

    assert report.mode == "narrow"
    assert report.status == "success"
    assert report.inserted == 1
    assert report.batches_committed == 1

    status = await get_sync_status()
    assert status.events_managed == 1
    assert status.last_narrow_sync is not None
    assert status.last_full_sync is None
    assert status.sync_in_progress is False


@pytest.mark.asyncio
async def test_sync_person_with_previous_birthday_moves_event(test_db):
    from birthdaysync.api.sync import PersonSyncRequest, sync_person

    await _insert_person("alice", "Alice", "--07-04")
    await sync_person("alice")

    db = await get_database()
    await db.execute("UPDATE people SET birthday = '--07-05' WHERE person_key = 'alice'")
    await db.commit()

    report = await sync_person("alice", PersonSyncRequest(previous_birthday="--07-04"))

    assert report.updated == 1
    assert report.inserted == 0


@pytest.mark.asyncio
async def test_sync_person_error_paths(test_db, monkeypatch):
    from birthdaysync.api.sync import PersonSyncRequest, sync_person
    from birthdaysync.sync.engine import get_orchestrator

    with pytest.raises(HTTPException) as exc_info:
        await sync_person("alice", PersonSyncRequest(previous_birthday="02/30"))
    assert exc_info.value.status_code == 422

    await set_setting("sync_paused", "true")
    with pytest.raises(HTTPException) as exc_info:
        await sync_person("alice")
    assert exc_info.value.status_code == 409
    await set_setting("sync_paused", "false")

    orchestrator = await get_orchestrator()

    async def failing_sync_one(*_args, **_kwargs):
        raise StoreUnavailable("store offline")

    monkeypatch.setattr(orchestrator, "sync_one", failing_sync_one)
    with pytest.raises(HTTPException) as exc_info:
        await sync_person("alice")
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_sync_person_refused_while_pass_running(test_db):
    from birthdaysync.api.sync import get_sync_status, sync_person
    from birthdaysync.sync.engine import get_orchestrator

    orchestrator = await get_orchestrator()
    async with orchestrator._lock:
        status = await get_sync_status()
        assert status.sync_in_progress is True

        with pytest.raises(HTTPException) as exc_info:
            await sync_person("alice")
        assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_trigger_full_sync_runs_in_background(test_db):
    from birthdaysync.api.sync import get_sync_status, trigger_full_sync
    from birthdaysync.utils import tasks as tasks_module

    await _insert_person("alice", "Alice", "--07-04")

    result = await trigger_full_sync()
    assert result["status"] == "ok"

    await asyncio.gather(*list(tasks_module._background_tasks))

    status = await get_sync_status()
    assert status.events_managed == 7
    assert status.last_full_sync is not None
    assert status.consecutive_failures == 0


@pytest.mark.asyncio
async def test_pause_and_resume(test_db):
    from birthdaysync.api.sync import get_sync_status, pause_sync, resume_sync, trigger_full_sync

    assert (await pause_sync())["sync_paused"] is True
    assert await is_sync_paused()
    assert (await get_sync_status()).sync_paused is True

    with pytest.raises(HTTPException) as exc_info:
        await trigger_full_sync()
    assert exc_info.value.status_code == 409

    assert (await resume_sync())["sync_paused"] is False
    assert not await is_sync_paused()


@pytest.mark.asyncio
async def test_sync_log_filters_and_pagination(test_db):
    from birthdaysync.api.sync import get_sync_log

    await _insert_log(None, "sync_full", "success")
    await _insert_log("alice", "sync_narrow", "success")
    await _insert_log("alice", "sync_narrow", "failure")

    everything = await get_sync_log(page=1, page_size=2)
    assert everything.total == 3
    assert len(everything.entries) == 2
    # newest first
    assert everything.entries[0].status == "failure"

    second_page = await get_sync_log(page=2, page_size=2)
    assert [entry.action for entry in second_page.entries] == ["sync_full"]

    alice = await get_sync_log(person_key="alice")
    assert alice.total == 2

    failures = await get_sync_log(status_filter="failure")
    assert failures.total == 1
    assert failures.entries[0].person_key == "alice"


@pytest.mark.asyncio
async def test_remove_person_events_after_birthday_removed(test_db):
    from birthdaysync.api.sync import RemoveEventsRequest, remove_person_events, trigger_full_sync
    from birthdaysync.utils import tasks as tasks_module

    await _insert_person("alice", "Alice", "--07-04")
    await trigger_full_sync()
    await asyncio.gather(*list(tasks_module._background_tasks))

    db = await get_database()
    await db.execute("UPDATE people SET birthday = NULL WHERE person_key = 'alice'")
    await db.commit()

    report = await remove_person_events("alice", RemoveEventsRequest(birthday="--07-04"))

    assert report.mode == "remove"
    assert report.deleted == 7
    cursor = await db.execute("SELECT COUNT(*) FROM events")
    assert (await cursor.fetchone())[0] == 0
    cursor = await db.execute("SELECT COUNT(*) FROM reminders")
    assert (await cursor.fetchone())[0] == 0


@pytest.mark.asyncio
async def test_remove_person_events_error_paths(test_db):
    from birthdaysync.api.sync import RemoveEventsRequest, remove_person_events

    with pytest.raises(HTTPException) as exc_info:
        await remove_person_events("alice", RemoveEventsRequest(birthday="yesterday"))
    assert exc_info.value.status_code == 422

    with pytest.raises(HTTPException) as exc_info:
        await remove_person_events("nobody", RemoveEventsRequest(birthday="--07-04"))
    assert exc_info.value.status_code == 404

    report = await remove_person_events(
        "nobody", RemoveEventsRequest(birthday="--07-04", display_name="Nobody")
    )
    assert report.deleted == 0
