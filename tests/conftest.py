"""Pytest configuration and fixtures."""

import os
from datetime import date

import pytest
import pytest_asyncio

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["LOG_LEVEL"] = "debug"


@pytest_asyncio.fixture
async def test_db():
    """Create a test database."""
    from birthdaysync.database import get_database, close_database
    import birthdaysync.database as db_module
    from birthdaysync.sync.engine import reset_orchestrator

    # Reset the global connection
    db_module._db_connection = None
    reset_orchestrator()

    db = await get_database()

    yield db

    reset_orchestrator()
    await close_database()
    db_module._db_connection = None


@pytest.fixture
def today():
    """Fixed "today" used by engine tests."""
    return date(2024, 3, 1)


@pytest.fixture
def settings():
    """Settings with a small horizon and predictable reminders."""
    from birthdaysync.config import Settings

    return Settings(
        database_path=":memory:",
        horizon_years_past=1,
        horizon_years_future=2,
        narrow_horizon_years=0,
        default_reminder_minutes="0,1440",
        max_batch_operations=200,
        store_max_batch_operations=500,
        calendar_name="Birthdays",
        event_title_template="{name}'s birthday",
        linkage="title",
    )


@pytest.fixture
def client(monkeypatch):
    """Create a test client for the FastAPI app, without background jobs."""
    from fastapi.testclient import TestClient
    import birthdaysync.database as db_module
    from birthdaysync.main import app

    db_module._db_connection = None
    monkeypatch.setattr("birthdaysync.jobs.scheduler.setup_scheduler", lambda: None)

    with TestClient(app) as c:
        yield c

    db_module._db_connection = None
