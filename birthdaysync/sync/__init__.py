"""Sync engine module."""

from birthdaysync.sync.engine import (
    SyncOrchestrator,
    SyncReport,
    get_orchestrator,
    trigger_sync_all,
    trigger_sync_for_person,
)

__all__ = [
    "SyncOrchestrator",
    "SyncReport",
    "get_orchestrator",
    "trigger_sync_all",
    "trigger_sync_for_person",
]
