"""Core audit module - sync log persistence."""

from core.audit.sync_log import (
    SyncLogBackend,
    InMemorySyncLogBackend,
    SQLiteSyncLogBackend,
    init_sync_log_db,
)

__all__ = [
    "SyncLogBackend",
    "InMemorySyncLogBackend",
    "SQLiteSyncLogBackend",
    "init_sync_log_db",
]
