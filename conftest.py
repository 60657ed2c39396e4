"""Shared fixtures: an in-memory AutoCount stand-in and in-memory stores."""

from typing import Any, Dict, List

import pytest

from connectors.erp_base import (
    ERPAuthenticationError,
    ERPConfig,
    ERPConflictError,
    ERPConnectionStatus,
    ERPConnector,
    ERPError,
    ERPNotFoundError,
    RemoteWriteResult,
)
from core.audit.sync_log import InMemorySyncLogBackend
from core.models.records import EntityType
from core.observability.metrics import MetricsCollector
from reconciliation.orchestrator import SyncOrchestrator
from reconciliation.retry import RetryDispatcher
from reconciliation.runtime import assemble_runtime, set_runtime
from storage.local_store import InMemoryLocalStore


KEY_FIELDS = {
    EntityType.ITEM: "code",
    EntityType.SUPPLIER: "code",
    EntityType.PURCHASE_ORDER: "DocNo",
}


class FakeAutoCount(ERPConnector):
    """AutoCount gateway held in memory.

    ``create_errors`` / ``update_errors`` map a natural key to the error the
    next create/update of that key raises. ``calls`` records every remote
    call after login.
    """

    def __init__(self):
        super().__init__(ERPConfig(connector_type="fake", custom_settings={"location": "WH1"}))
        self.remote: Dict[EntityType, List[Dict[str, Any]]] = {t: [] for t in EntityType}
        self.create_errors: Dict[str, ERPError] = {}
        self.update_errors: Dict[str, ERPError] = {}
        self.list_error: ERPError = None
        self.fail_login = False
        self.logins = 0
        self.calls: List[tuple] = []
        self.adjustments: List[Dict[str, Any]] = []

    async def connect(self) -> None:
        self.logins += 1
        if self.fail_login:
            self._connection_status = ERPConnectionStatus.FAILED
            raise ERPAuthenticationError("Authentication failed: bad password", 401)
        self._connection_status = ERPConnectionStatus.CONNECTED

    async def disconnect(self) -> None:
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    async def test_connection(self) -> bool:
        self.calls.append(("test_connection",))
        return True

    def _find(self, entity: EntityType, key: str):
        field = KEY_FIELDS[entity]
        for record in self.remote[entity]:
            if record.get(field) == key:
                return record
        return None

    async def list_records(self, entity: EntityType) -> List[Dict[str, Any]]:
        self.calls.append(("list", entity))
        if self.list_error:
            raise self.list_error
        return [dict(r) for r in self.remote[entity]]

    async def create_record(self, entity: EntityType, payload: Dict[str, Any]) -> RemoteWriteResult:
        key = payload[KEY_FIELDS[entity]]
        self.calls.append(("create", entity, key))
        if key in self.create_errors:
            raise self.create_errors[key]
        if self._find(entity, key):
            raise ERPConflictError(f"Already exists: {key}", 409)
        self.remote[entity].append(dict(payload))
        return RemoteWriteResult(remote_id=key, status="created")

    async def update_record(self, entity: EntityType, key: str, payload: Dict[str, Any]) -> RemoteWriteResult:
        self.calls.append(("update", entity, key))
        if key in self.update_errors:
            raise self.update_errors[key]
        existing = self._find(entity, key)
        if existing is None:
            raise ERPNotFoundError(f"Resource not found: {key}", 404)
        existing.update(payload)
        return RemoteWriteResult(remote_id=key, status="updated")

    async def post_stock_adjustment(self, payload: Dict[str, Any]) -> RemoteWriteResult:
        self.calls.append(("adjustment", payload["ItemCode"]))
        self.adjustments.append(payload)
        return RemoteWriteResult(remote_id=f"SA-{len(self.adjustments):05d}", status="posted")


def ac_item(code: str, **overrides) -> Dict[str, Any]:
    """AutoCount item record as the gateway returns it."""
    record = {
        "code": code,
        "description": f"Item {code}",
        "itemGroup": "RAW",
        "itemType": "CONSUMABLE",
        "baseUOM": "pcs",
        "stockControl": True,
        "hasBatchNo": False,
        "costPerUnit": 2.5,
        "price": 4,
        "stockBalance": 0,
    }
    record.update(overrides)
    return record


def ac_supplier(code: str, **overrides) -> Dict[str, Any]:
    record = {
        "code": code,
        "companyName": f"Supplier {code}",
        "contactPerson": "Lim",
        "phone": "03-1234",
        "email": f"{code.lower()}@example.com",
        "address": "Kuala Lumpur",
        "creditTerms": "30 days",
        "isActive": True,
    }
    record.update(overrides)
    return record


def ac_purchase_order(doc_no: str, supplier_code: str, lines=None, **overrides) -> Dict[str, Any]:
    record = {
        "DocNo": doc_no,
        "SupplierCode": supplier_code,
        "DocDate": "2025-03-01T00:00:00",
        "DeliveryDate": "2025-03-10",
        "Description": "Monthly restock",
        "IsCancelled": False,
        "Details": lines if lines is not None else [],
    }
    record.update(overrides)
    return record


@pytest.fixture
def erp():
    return FakeAutoCount()


@pytest.fixture
def store():
    return InMemoryLocalStore()


@pytest.fixture
def sync_log():
    return InMemorySyncLogBackend()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def orchestrator(erp, store, sync_log, metrics):
    return SyncOrchestrator(lambda: erp, store, sync_log, max_concurrency=3, metrics=metrics)


@pytest.fixture
def dispatcher(orchestrator, metrics):
    return RetryDispatcher(orchestrator, metrics=metrics)


@pytest.fixture
def runtime(erp, store, sync_log):
    """Process runtime wired to the fake gateway, installed for routes and activities."""
    installed = assemble_runtime(lambda: erp, store, sync_log)
    set_runtime(installed)
    yield installed
    set_runtime(None)
