"""Local record store: opaque CRUD collections plus the stock ledger."""

from storage.local_store import (
    COMPONENTS,
    PURCHASE_ORDER_LINES,
    PURCHASE_ORDERS,
    STOCK_MOVEMENTS,
    SUPPLIERS,
    InMemoryLocalStore,
    LedgerViolationError,
    LocalStore,
    RecordNotFoundError,
    StoreError,
    UniqueConstraintError,
)
from storage.sqlite_store import SQLiteLocalStore, init_local_db

__all__ = [
    "COMPONENTS",
    "PURCHASE_ORDER_LINES",
    "PURCHASE_ORDERS",
    "STOCK_MOVEMENTS",
    "SUPPLIERS",
    "InMemoryLocalStore",
    "LedgerViolationError",
    "LocalStore",
    "RecordNotFoundError",
    "StoreError",
    "UniqueConstraintError",
    "SQLiteLocalStore",
    "init_local_db",
]
