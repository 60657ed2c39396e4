"""Sync log persistence.

The ``autocount_sync_log`` collection is the durable history of every sync
attempt. Entries are appended by the orchestrator and only ever mutated by
the retry dispatcher, through ``compare_and_set`` so that two retries of the
same entry cannot both claim it.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from core.models.sync_log import SyncLogEntry, SyncStatus

UPDATABLE_FIELDS = (
    "sync_status",
    "autocount_doc_no",
    "error_message",
    "retry_count",
    "synced_at",
)


class SyncLogBackend(ABC):
    """Abstract base class for sync log persistence backends."""

    @abstractmethod
    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        """Persist a new entry."""
        pass

    @abstractmethod
    def get(self, entry_id: str) -> Optional[SyncLogEntry]:
        pass

    @abstractmethod
    def find_by_reference(self, reference_id: str) -> Optional[SyncLogEntry]:
        """Most recent entry for a reference id."""
        pass

    @abstractmethod
    def query(
        self,
        sync_status: Optional[SyncStatus] = None,
        reference_type: Optional[str] = None,
        sync_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        """Entries matching the filters, newest first."""
        pass

    @abstractmethod
    def compare_and_set(
        self,
        entry_id: str,
        expected: Iterable[SyncStatus],
        updates: Dict[str, Any],
    ) -> Optional[SyncLogEntry]:
        """Apply ``updates`` only if the entry's status is one of ``expected``.

        Returns:
            The updated entry, or None if the entry is missing or its status
            did not match
        """
        pass

    def resolve(self, ref: str) -> Optional[SyncLogEntry]:
        """Look up by entry id first, then by reference id."""
        return self.get(ref) or self.find_by_reference(ref)


def _check_updates(updates: Dict[str, Any]) -> None:
    unknown = set(updates) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Sync log fields cannot be updated: {sorted(unknown)}")


class InMemorySyncLogBackend(SyncLogBackend):
    """In-memory sync log for testing."""

    def __init__(self):
        self._entries: Dict[str, SyncLogEntry] = {}
        self._lock = threading.Lock()

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        with self._lock:
            self._entries[entry.id] = entry.model_copy()
        return entry

    def get(self, entry_id: str) -> Optional[SyncLogEntry]:
        entry = self._entries.get(entry_id)
        return entry.model_copy() if entry else None

    def find_by_reference(self, reference_id: str) -> Optional[SyncLogEntry]:
        matches = [e for e in self._entries.values() if e.reference_id == reference_id]
        if not matches:
            return None
        return max(matches, key=lambda e: e.created_at).model_copy()

    def query(
        self,
        sync_status: Optional[SyncStatus] = None,
        reference_type: Optional[str] = None,
        sync_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        results = []
        for entry in sorted(self._entries.values(), key=lambda e: e.created_at, reverse=True):
            if sync_status and entry.sync_status != sync_status:
                continue
            if reference_type and entry.reference_type != reference_type:
                continue
            if sync_type and entry.sync_type != sync_type:
                continue
            results.append(entry.model_copy())
            if len(results) >= limit:
                break
        return results

    def compare_and_set(
        self,
        entry_id: str,
        expected: Iterable[SyncStatus],
        updates: Dict[str, Any],
    ) -> Optional[SyncLogEntry]:
        _check_updates(updates)
        expected = set(expected)
        with self._lock:
            current = self._entries.get(entry_id)
            if current is None or current.sync_status not in expected:
                return None
            updated = current.model_copy(update={**updates, "updated_at": datetime.utcnow()})
            self._entries[entry_id] = updated
            return updated.model_copy()

    def clear(self) -> None:
        """Clear all entries (for testing)."""
        self._entries.clear()


class SQLiteSyncLogBackend(SyncLogBackend):
    """Sync log stored in the ``autocount_sync_log`` SQLite table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        init_sync_log_db(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> SyncLogEntry:
        return SyncLogEntry.model_validate(dict(row))

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO autocount_sync_log
                (id, reference_id, reference_type, sync_type, sync_status,
                 autocount_doc_no, error_message, retry_count,
                 created_at, updated_at, synced_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.id,
                entry.reference_id,
                entry.reference_type,
                entry.sync_type,
                entry.sync_status.value,
                entry.autocount_doc_no,
                entry.error_message,
                entry.retry_count,
                entry.created_at.isoformat(),
                entry.updated_at.isoformat(),
                entry.synced_at.isoformat() if entry.synced_at else None,
            ))
            conn.commit()
        finally:
            conn.close()
        return entry

    def get(self, entry_id: str) -> Optional[SyncLogEntry]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM autocount_sync_log WHERE id = ?", (entry_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_entry(row) if row else None

    def find_by_reference(self, reference_id: str) -> Optional[SyncLogEntry]:
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT * FROM autocount_sync_log
                WHERE reference_id = ?
                ORDER BY created_at DESC
                LIMIT 1
            """, (reference_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_entry(row) if row else None

    def query(
        self,
        sync_status: Optional[SyncStatus] = None,
        reference_type: Optional[str] = None,
        sync_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[SyncLogEntry]:
        clauses = []
        params: List[Any] = []
        if sync_status:
            clauses.append("sync_status = ?")
            params.append(SyncStatus(sync_status).value)
        if reference_type:
            clauses.append("reference_type = ?")
            params.append(reference_type)
        if sync_type:
            clauses.append("sync_type = ?")
            params.append(sync_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT * FROM autocount_sync_log {where} ORDER BY created_at DESC LIMIT ?",
                params,
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_entry(r) for r in rows]

    def compare_and_set(
        self,
        entry_id: str,
        expected: Iterable[SyncStatus],
        updates: Dict[str, Any],
    ) -> Optional[SyncLogEntry]:
        _check_updates(updates)
        expected_values = [SyncStatus(s).value for s in expected]
        if not expected_values:
            return None

        values: Dict[str, Any] = {}
        for name, value in updates.items():
            if isinstance(value, SyncStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            values[name] = value
        values["updated_at"] = datetime.utcnow().isoformat()

        assignments = ", ".join(f"{name} = ?" for name in values)
        placeholders = ", ".join("?" for _ in expected_values)

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE autocount_sync_log SET {assignments} "
                f"WHERE id = ? AND sync_status IN ({placeholders})",
                [*values.values(), entry_id, *expected_values],
            )
            conn.commit()
            changed = cursor.rowcount
        finally:
            conn.close()

        return self.get(entry_id) if changed else None


def init_sync_log_db(db_path: Path) -> None:
    """Create the autocount_sync_log table if it does not exist."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS autocount_sync_log (
                id TEXT PRIMARY KEY,
                reference_id TEXT NOT NULL,
                reference_type TEXT NOT NULL,
                sync_type TEXT NOT NULL,
                sync_status TEXT NOT NULL,
                autocount_doc_no TEXT,
                error_message TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                synced_at TEXT
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sync_log_reference
            ON autocount_sync_log(reference_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sync_log_status
            ON autocount_sync_log(sync_status)
        """)
        conn.commit()
    finally:
        conn.close()
