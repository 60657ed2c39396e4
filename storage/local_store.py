"""Local record store.

The sync engine consumes the platform's database as opaque CRUD collections:
read-all-by-filter, insert, update-by-id, and append for the stock ledger.
Records are plain dicts keyed by field name, each with a string ``id``.

Two implementations:
- InMemoryLocalStore: for tests and dry runs
- SQLiteLocalStore (storage/sqlite_store.py): durable, enforces UNIQUE
  natural keys at the database level
"""

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from core.models.stock import StockMovement


# =============================================================================
# Collections
# =============================================================================

COMPONENTS = "components"
SUPPLIERS = "suppliers"
PURCHASE_ORDERS = "purchase_orders"
PURCHASE_ORDER_LINES = "purchase_order_lines"
STOCK_MOVEMENTS = "stock_movements"

# Column kinds drive SQLite storage and read-back conversion
SCHEMA: Dict[str, Dict[str, str]] = {
    COMPONENTS: {
        "id": "text",
        "sku": "text",
        "autocount_item_code": "text",
        "name": "text",
        "description": "text",
        "item_group": "text",
        "item_type": "text",
        "unit": "text",
        "stock_control": "bool",
        "has_batch_no": "bool",
        "cost_per_unit": "decimal",
        "price": "decimal",
        "stock_quantity": "decimal",
        "autocount_synced": "bool",
        "last_synced_at": "datetime",
        "created_at": "datetime",
        "updated_at": "datetime",
    },
    SUPPLIERS: {
        "id": "text",
        "supplier_code": "text",
        "company_name": "text",
        "contact_person": "text",
        "phone": "text",
        "email": "text",
        "address": "text",
        "credit_terms": "text",
        "is_active": "bool",
        "autocount_synced": "bool",
        "last_synced_at": "datetime",
        "created_at": "datetime",
        "updated_at": "datetime",
    },
    PURCHASE_ORDERS: {
        "id": "text",
        "po_number": "text",
        "supplier_id": "text",
        "doc_date": "date",
        "delivery_date": "date",
        "status": "text",
        "total_amount": "decimal",
        "remarks": "text",
        "autocount_doc_no": "text",
        "autocount_synced": "bool",
        "last_synced_at": "datetime",
        "created_at": "datetime",
        "updated_at": "datetime",
    },
    PURCHASE_ORDER_LINES: {
        "id": "text",
        "purchase_order_id": "text",
        "component_id": "text",
        "line_number": "int",
        "quantity": "decimal",
        "unit_price": "decimal",
        "uom": "text",
        "line_remarks": "text",
        "created_at": "datetime",
        "updated_at": "datetime",
    },
    STOCK_MOVEMENTS: {
        "id": "text",
        "item_id": "text",
        "item_type": "text",
        "movement_type": "text",
        "quantity": "decimal",
        "unit_cost": "decimal",
        "batch_number": "text",
        "notes": "text",
        "created_at": "datetime",
        "autocount_synced": "bool",
        "autocount_doc_no": "text",
    },
}

# Natural keys; enforced as UNIQUE by every implementation
UNIQUE_KEYS: Dict[str, Tuple[str, ...]] = {
    COMPONENTS: ("sku", "autocount_item_code"),
    SUPPLIERS: ("supplier_code",),
    PURCHASE_ORDERS: ("po_number", "autocount_doc_no"),
    PURCHASE_ORDER_LINES: (),
    STOCK_MOVEMENTS: (),
}

# The ledger is append-only; only the AutoCount sync flags may change
MOVEMENT_MUTABLE_FIELDS = ("autocount_synced", "autocount_doc_no")


# =============================================================================
# Errors
# =============================================================================

class StoreError(Exception):
    """Base class for local store errors."""


class UniqueConstraintError(StoreError):
    """Insert or update would duplicate a natural key."""


class RecordNotFoundError(StoreError):
    """No record with the given id."""


class LedgerViolationError(StoreError):
    """Attempt to rewrite a stock movement."""


def _check_collection(collection: str) -> None:
    if collection not in SCHEMA:
        raise StoreError(f"Unknown collection: {collection}")


def _check_movement_update(collection: str, values: Dict[str, Any]) -> None:
    if collection == STOCK_MOVEMENTS:
        illegal = set(values) - set(MOVEMENT_MUTABLE_FIELDS)
        if illegal:
            raise LedgerViolationError(
                f"Stock movements are append-only; cannot update {sorted(illegal)}"
            )


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(record.get(k) == v for k, v in filters.items())


# =============================================================================
# Interface
# =============================================================================

class LocalStore(ABC):
    """Abstract local record store."""

    @abstractmethod
    def list_records(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        """All records in a collection matching the equality filters."""
        pass

    @abstractmethod
    def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        pass

    def find_one(self, collection: str, **filters: Any) -> Optional[Dict[str, Any]]:
        records = self.list_records(collection, **filters)
        return records[0] if records else None

    @abstractmethod
    def insert_record(self, collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record, assigning ``id`` and timestamps.

        Raises:
            UniqueConstraintError: A natural key is already taken
        """
        pass

    @abstractmethod
    def update_record(self, collection: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Update only the given fields of one record.

        Raises:
            RecordNotFoundError: No record with this id
            UniqueConstraintError: Update would duplicate a natural key
            LedgerViolationError: Update touches an immutable movement field
        """
        pass

    @abstractmethod
    def append_movement(self, movement: StockMovement) -> StockMovement:
        """Append a ledger row and adjust the item's cached stock_quantity."""
        pass

    def list_movements(self, item_id: str) -> List[StockMovement]:
        """Ledger rows for one item, oldest first."""
        rows = self.list_records(STOCK_MOVEMENTS, item_id=item_id)
        movements = [StockMovement.model_validate(r) for r in rows]
        movements.sort(key=lambda m: m.created_at)
        return movements

    def mark_movement_synced(self, movement_id: str, doc_no: Optional[str]) -> Dict[str, Any]:
        return self.update_record(
            STOCK_MOVEMENTS,
            movement_id,
            {"autocount_synced": True, "autocount_doc_no": doc_no},
        )


# =============================================================================
# In-memory implementation
# =============================================================================

class InMemoryLocalStore(LocalStore):
    """In-memory store for testing."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in SCHEMA}
        self._lock = threading.RLock()

    def _check_unique(self, collection: str, values: Dict[str, Any], exclude_id: Optional[str] = None) -> None:
        for key in UNIQUE_KEYS[collection]:
            value = values.get(key)
            if value in (None, ""):
                continue
            for record in self._collections[collection].values():
                if record["id"] != exclude_id and record.get(key) == value:
                    raise UniqueConstraintError(
                        f"UNIQUE constraint failed: {collection}.{key} = {value!r}"
                    )

    def list_records(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        _check_collection(collection)
        with self._lock:
            return [dict(r) for r in self._collections[collection].values() if _matches(r, filters)]

    def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        _check_collection(collection)
        record = self._collections[collection].get(record_id)
        return dict(record) if record else None

    def insert_record(self, collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        _check_collection(collection)
        now = datetime.utcnow()
        record = {"id": str(uuid.uuid4()), **values}
        if "created_at" in SCHEMA[collection]:
            record.setdefault("created_at", now)
        if "updated_at" in SCHEMA[collection]:
            record["updated_at"] = now
        with self._lock:
            if record["id"] in self._collections[collection]:
                raise UniqueConstraintError(f"UNIQUE constraint failed: {collection}.id")
            self._check_unique(collection, record)
            self._collections[collection][record["id"]] = record
        return dict(record)

    def update_record(self, collection: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        _check_collection(collection)
        _check_movement_update(collection, values)
        with self._lock:
            current = self._collections[collection].get(record_id)
            if current is None:
                raise RecordNotFoundError(f"{collection} record {record_id} not found")
            merged = {**current, **values}
            self._check_unique(collection, merged, exclude_id=record_id)
            if "updated_at" in SCHEMA[collection]:
                merged["updated_at"] = datetime.utcnow()
            self._collections[collection][record_id] = merged
            return dict(merged)

    def append_movement(self, movement: StockMovement) -> StockMovement:
        with self._lock:
            if movement.id in self._collections[STOCK_MOVEMENTS]:
                raise LedgerViolationError(f"Stock movement {movement.id} already recorded")
            self._collections[STOCK_MOVEMENTS][movement.id] = movement.model_dump()
            item = self._collections[COMPONENTS].get(movement.item_id)
            if item is not None:
                current = Decimal(str(item.get("stock_quantity") or 0))
                item["stock_quantity"] = current + (movement.quantity or Decimal("0"))
                item["updated_at"] = datetime.utcnow()
        return movement
