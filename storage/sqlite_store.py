"""SQLite-backed local store.

Schema is created by ``init_local_db``. Natural keys are UNIQUE at the
database level, so a second run that races past the single-flight guard
still cannot double-create a record. Decimals are stored as TEXT to keep
their exact value.

Every driver error (a locked database, a missing file) surfaces as a
StoreError, so callers handle one error family for both stores.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.stock import StockMovement
from storage.local_store import (
    COMPONENTS,
    SCHEMA,
    STOCK_MOVEMENTS,
    UNIQUE_KEYS,
    LedgerViolationError,
    LocalStore,
    RecordNotFoundError,
    StoreError,
    UniqueConstraintError,
    _check_collection,
    _check_movement_update,
)

SQL_TYPES = {
    "text": "TEXT",
    "decimal": "TEXT",
    "bool": "INTEGER",
    "int": "INTEGER",
    "date": "TEXT",
    "datetime": "TEXT",
}


def _to_db(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "bool":
        return 1 if value else 0
    if kind == "decimal":
        return str(value if isinstance(value, Decimal) else Decimal(str(value)))
    if kind in ("date", "datetime"):
        return value.isoformat() if isinstance(value, (date, datetime)) else str(value)
    if kind == "int":
        return int(value)
    return value if isinstance(value, str) else str(value)


def _from_db(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "bool":
        return bool(value)
    if kind == "decimal":
        return Decimal(value)
    if kind == "date":
        return date.fromisoformat(value[:10])
    if kind == "datetime":
        return datetime.fromisoformat(value)
    if kind == "int":
        return int(value)
    return value


@contextmanager
def _db_errors(collection: str):
    """Translate driver errors into the store's error family."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise UniqueConstraintError(str(e))
    except sqlite3.Error as e:
        raise StoreError(f"{collection}: {e}") from e


def init_local_db(db_path: Path) -> None:
    """Create the local collections if they do not exist."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        for table, columns in SCHEMA.items():
            column_sql = [
                f"{name} {SQL_TYPES[kind]}" + (" PRIMARY KEY" if name == "id" else "")
                for name, kind in columns.items()
            ]
            column_sql.extend(f"UNIQUE({key})" for key in UNIQUE_KEYS[table])
            cursor.execute(f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(column_sql)})")

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_stock_movements_item
            ON stock_movements(item_id, created_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_po_lines_po
            ON purchase_order_lines(purchase_order_id)
        """)
        conn.commit()
    finally:
        conn.close()


class SQLiteLocalStore(LocalStore):
    """Local store on a SQLite file."""

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        init_local_db(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _row_to_record(collection: str, row: sqlite3.Row) -> Dict[str, Any]:
        columns = SCHEMA[collection]
        return {name: _from_db(columns[name], row[name]) for name in row.keys()}

    @staticmethod
    def _encode(collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        columns = SCHEMA[collection]
        unknown = set(values) - set(columns)
        if unknown:
            raise StoreError(f"{collection} has no columns {sorted(unknown)}")
        return {name: _to_db(columns[name], value) for name, value in values.items()}

    def _where(self, collection: str, filters: Dict[str, Any]):
        encoded = self._encode(collection, filters)
        clauses = []
        params = []
        for name, value in encoded.items():
            if value is None:
                clauses.append(f"{name} IS NULL")
            else:
                clauses.append(f"{name} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_records(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        _check_collection(collection)
        where, params = self._where(collection, filters)
        order = " ORDER BY created_at, rowid" if "created_at" in SCHEMA[collection] else ""
        with _db_errors(collection):
            conn = self._connect()
            try:
                rows = conn.execute(f"SELECT * FROM {collection}{where}{order}", params).fetchall()
            finally:
                conn.close()
        return [self._row_to_record(collection, r) for r in rows]

    def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        _check_collection(collection)
        with _db_errors(collection):
            conn = self._connect()
            try:
                row = conn.execute(f"SELECT * FROM {collection} WHERE id = ?", (record_id,)).fetchone()
            finally:
                conn.close()
        return self._row_to_record(collection, row) if row else None

    def insert_record(self, collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        _check_collection(collection)
        now = datetime.utcnow()
        record = {"id": str(uuid.uuid4()), **values}
        if "created_at" in SCHEMA[collection]:
            record.setdefault("created_at", now)
        if "updated_at" in SCHEMA[collection]:
            record["updated_at"] = now
        encoded = self._encode(collection, record)

        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)
        with _db_errors(collection):
            conn = self._connect()
            try:
                conn.execute(
                    f"INSERT INTO {collection} ({columns}) VALUES ({placeholders})",
                    list(encoded.values()),
                )
                conn.commit()
            finally:
                conn.close()
        return self.get_record(collection, record["id"])

    def update_record(self, collection: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        _check_collection(collection)
        _check_movement_update(collection, values)
        values = dict(values)
        values.pop("id", None)
        if "updated_at" in SCHEMA[collection]:
            values["updated_at"] = datetime.utcnow()
        encoded = self._encode(collection, values)
        if not encoded:
            record = self.get_record(collection, record_id)
            if record is None:
                raise RecordNotFoundError(f"{collection} record {record_id} not found")
            return record

        assignments = ", ".join(f"{name} = ?" for name in encoded)
        with _db_errors(collection):
            conn = self._connect()
            try:
                cursor = conn.execute(
                    f"UPDATE {collection} SET {assignments} WHERE id = ?",
                    [*encoded.values(), record_id],
                )
                conn.commit()
                changed = cursor.rowcount
            finally:
                conn.close()

        if not changed:
            raise RecordNotFoundError(f"{collection} record {record_id} not found")
        return self.get_record(collection, record_id)

    def append_movement(self, movement: StockMovement) -> StockMovement:
        """Insert the movement and bump the cached total in one transaction."""
        encoded = self._encode(STOCK_MOVEMENTS, movement.model_dump())
        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)

        with _db_errors(STOCK_MOVEMENTS):
            conn = self._connect()
            conn.isolation_level = None
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(
                        f"INSERT INTO {STOCK_MOVEMENTS} ({columns}) VALUES ({placeholders})",
                        list(encoded.values()),
                    )
                    row = conn.execute(
                        f"SELECT stock_quantity FROM {COMPONENTS} WHERE id = ?",
                        (movement.item_id,),
                    ).fetchone()
                    if row is not None:
                        current = Decimal(row["stock_quantity"] or "0")
                        conn.execute(
                            f"UPDATE {COMPONENTS} SET stock_quantity = ?, updated_at = ? WHERE id = ?",
                            (
                                str(current + (movement.quantity or Decimal("0"))),
                                datetime.utcnow().isoformat(),
                                movement.item_id,
                            ),
                        )
                    conn.execute("COMMIT")
                except sqlite3.IntegrityError as e:
                    conn.execute("ROLLBACK")
                    raise LedgerViolationError(f"Stock movement {movement.id} not recorded: {e}")
                except sqlite3.Error:
                    conn.execute("ROLLBACK")
                    raise
            finally:
                conn.close()
        return movement
