"""Sync orchestrator tests: preview, execute (pull) and push runs."""

import asyncio
from decimal import Decimal

import pytest

from connectors.erp_base import ERPError
from core.models.records import EntityType, SyncDirection
from core.models.sync_log import SyncStatus
from reconciliation.errors import AuthenticationFailure, FetchFailure
from reconciliation.orchestrator import SyncOrchestrator
from storage.local_store import (
    COMPONENTS,
    PURCHASE_ORDER_LINES,
    PURCHASE_ORDERS,
    STOCK_MOVEMENTS,
    SUPPLIERS,
    InMemoryLocalStore,
    StoreError,
)
from conftest import ac_item, ac_purchase_order, ac_supplier


class FailingWritesStore(InMemoryLocalStore):
    """Store whose inserts or updates fail for one collection."""

    def __init__(self, collection, fail_inserts=False, fail_updates=False):
        super().__init__()
        self.failing_collection = collection
        self.fail_inserts = fail_inserts
        self.fail_updates = fail_updates

    def insert_record(self, collection, values):
        if self.fail_inserts and collection == self.failing_collection:
            raise StoreError("disk I/O error")
        return super().insert_record(collection, values)

    def update_record(self, collection, record_id, values):
        if self.fail_updates and collection == self.failing_collection:
            raise StoreError("database is locked")
        return super().update_record(collection, record_id, values)


def by_code(store, code):
    return store.find_one(COMPONENTS, sku=code)


# =============================================================================
# Preview
# =============================================================================

class TestPreview:

    def test_preview_reports_without_changing_anything(self, erp, store, sync_log, orchestrator):
        erp.remote[EntityType.ITEM] = [ac_item("A"), ac_item("B", stockBalance=5)]
        store.insert_record(COMPONENTS, {"sku": "A", "autocount_item_code": "A", "name": "Old name"})

        report = asyncio.run(orchestrator.preview(EntityType.ITEM))

        assert report.summary.total == 2
        assert report.summary.to_create == 1
        assert report.summary.to_update == 1
        assert report.has_work
        assert len(store.list_records(COMPONENTS)) == 1
        assert store.list_records(STOCK_MOVEMENTS) == []
        assert sync_log.query() == []

    def test_preview_serializes_camel_case(self, erp, orchestrator):
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1")]

        report = asyncio.run(orchestrator.preview(EntityType.SUPPLIER))
        data = report.model_dump(by_alias=True, mode="json")

        assert data["entityType"] == "supplier"
        assert data["summary"]["toCreate"] == 1
        assert data["changes"][0]["action"] == "create"
        assert "localShape" not in data["changes"][0]

    def test_preview_auth_failure_raises(self, erp, sync_log, orchestrator):
        erp.fail_login = True

        with pytest.raises(AuthenticationFailure):
            asyncio.run(orchestrator.preview(EntityType.ITEM))
        assert sync_log.query() == []


# =============================================================================
# Execute
# =============================================================================

class TestExecute:

    def test_creates_items_with_opening_balance(self, erp, store, sync_log, orchestrator):
        erp.remote[EntityType.ITEM] = [ac_item("A", stockBalance=10), ac_item("B")]

        result = asyncio.run(orchestrator.execute(EntityType.ITEM))

        assert result.created == 2
        assert result.failed == 0
        a = by_code(store, "A")
        assert a["stock_quantity"] == Decimal("10")
        assert a["autocount_synced"] is True
        assert a["last_synced_at"] is not None
        assert "opening_balance" not in a

        movements = store.list_movements(a["id"])
        assert len(movements) == 1
        assert movements[0].movement_type == "opening_balance"
        assert movements[0].unit_cost == Decimal("2.5")
        assert movements[0].batch_number == "OPEN-A"
        assert store.list_movements(by_code(store, "B")["id"]) == []

        entries = sync_log.query()
        assert len(entries) == 1
        assert entries[0].reference_id == "inventory_pull"
        assert entries[0].sync_type == "pull"
        assert entries[0].sync_status == SyncStatus.SUCCESS
        assert entries[0].id == result.sync_log_id

    def test_second_execute_is_a_no_op(self, erp, store, sync_log, orchestrator):
        erp.remote[EntityType.ITEM] = [ac_item("A", stockBalance=10), ac_item("B")]

        asyncio.run(orchestrator.execute(EntityType.ITEM))
        second = asyncio.run(orchestrator.execute(EntityType.ITEM))

        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 2
        assert len(store.list_records(COMPONENTS)) == 2
        assert len(store.list_records(STOCK_MOVEMENTS)) == 1
        assert len(sync_log.query()) == 2

    def test_update_writes_only_changed_fields(self, erp, store, orchestrator):
        erp.remote[EntityType.ITEM] = [ac_item("A", stockBalance=10)]
        asyncio.run(orchestrator.execute(EntityType.ITEM))
        store.update_record(COMPONENTS, by_code(store, "A")["id"], {"item_group": "LOCAL-ONLY-EDIT"})

        erp.remote[EntityType.ITEM] = [ac_item("A", costPerUnit="3.10", itemGroup="LOCAL-ONLY-EDIT", stockBalance=99)]
        result = asyncio.run(orchestrator.execute(EntityType.ITEM))

        assert result.updated == 1
        a = by_code(store, "A")
        assert a["cost_per_unit"] == Decimal("3.10")
        assert a["stock_quantity"] == Decimal("10")
        assert len(store.list_records(STOCK_MOVEMENTS)) == 1

    def test_purchase_order_needs_local_supplier(self, erp, store, sync_log, orchestrator):
        erp.remote[EntityType.PURCHASE_ORDER] = [ac_purchase_order("PO-1", "S9")]

        result = asyncio.run(orchestrator.execute(EntityType.PURCHASE_ORDER))

        assert result.failed == 1
        assert "PO-1" in result.errors[0]
        assert "S9" in result.errors[0]
        assert "sync suppliers first" in result.errors[0]
        assert store.list_records(PURCHASE_ORDERS) == []

        entry = sync_log.query()[0]
        assert entry.sync_status == SyncStatus.PARTIAL
        assert entry.reference_id == "purchase_order_pull"
        assert entry.error_message == result.errors[0]

    def test_purchase_order_with_lines(self, erp, store, orchestrator):
        supplier = store.insert_record(SUPPLIERS, {"supplier_code": "S1", "company_name": "Acme"})
        component = store.insert_record(COMPONENTS, {"sku": "A", "autocount_item_code": "A", "name": "Part A"})
        erp.remote[EntityType.PURCHASE_ORDER] = [
            ac_purchase_order("PO-1", "S1", lines=[
                {"ItemCode": "A", "Quantity": 10, "UnitPrice": 2},
                {"ItemCode": "UNKNOWN", "Quantity": 1, "UnitPrice": 1},
            ]),
        ]

        result = asyncio.run(orchestrator.execute(EntityType.PURCHASE_ORDER))

        assert result.created == 1
        po = store.find_one(PURCHASE_ORDERS, po_number="PO-1")
        assert po["supplier_id"] == supplier["id"]
        assert po["autocount_doc_no"] == "PO-1"
        assert po["total_amount"] == Decimal("21")
        lines = store.list_records(PURCHASE_ORDER_LINES, purchase_order_id=po["id"])
        assert len(lines) == 1
        assert lines[0]["component_id"] == component["id"]

    def test_one_bad_record_does_not_stop_the_run(self, erp, store, orchestrator):
        erp.remote[EntityType.ITEM] = [ac_item("A"), {"description": "no code"}, ac_item("C")]

        result = asyncio.run(orchestrator.execute(EntityType.ITEM))

        assert result.created == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert not result.succeeded

    def test_local_write_failure_is_per_record(self, erp, sync_log, metrics):
        store = FailingWritesStore(SUPPLIERS, fail_inserts=True)
        orchestrator = SyncOrchestrator(lambda: erp, store, sync_log, metrics=metrics)
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1")]

        result = asyncio.run(orchestrator.execute(EntityType.SUPPLIER))

        assert result.failed == 1
        assert "S1" in result.errors[0]
        assert "local write failed" in result.errors[0]

    def test_auth_failure_logs_one_failed_entry(self, erp, store, sync_log, orchestrator, metrics):
        erp.fail_login = True

        with pytest.raises(AuthenticationFailure):
            asyncio.run(orchestrator.execute(EntityType.SUPPLIER))

        entries = sync_log.query()
        assert len(entries) == 1
        assert entries[0].sync_status == SyncStatus.FAILED
        assert entries[0].reference_id == "supplier_pull"
        assert "authentication" in entries[0].error_message.lower()
        assert store.list_records(SUPPLIERS) == []
        assert metrics.get_summary()["runs"]["failed"] == 1

    def test_fetch_failure_logs_one_failed_entry(self, erp, sync_log, orchestrator):
        erp.list_error = ERPError("API error 500: gateway down", 500)

        with pytest.raises(FetchFailure):
            asyncio.run(orchestrator.execute(EntityType.ITEM))

        entries = sync_log.query()
        assert len(entries) == 1
        assert entries[0].sync_status == SyncStatus.FAILED

    def test_no_log_entry_when_disabled(self, erp, sync_log, orchestrator):
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1")]

        result = asyncio.run(orchestrator.execute(EntityType.SUPPLIER, write_log=False))

        assert result.created == 1
        assert result.sync_log_id is None
        assert sync_log.query() == []

    def test_concurrent_runs_do_not_double_create(self, erp, store, orchestrator):
        erp.remote[EntityType.ITEM] = [ac_item("A", stockBalance=4), ac_item("B"), ac_item("C")]

        async def both():
            return await asyncio.gather(
                orchestrator.execute(EntityType.ITEM),
                orchestrator.execute(EntityType.ITEM),
            )

        first, second = asyncio.run(both())

        assert first.created + second.created == 3
        assert first.failed == second.failed == 0
        assert len(store.list_records(COMPONENTS)) == 3
        assert len(store.list_records(STOCK_MOVEMENTS)) == 1

    def test_each_run_logs_in_once(self, erp, orchestrator):
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1"), ac_supplier("S2")]

        asyncio.run(orchestrator.execute(EntityType.SUPPLIER))
        asyncio.run(orchestrator.execute(EntityType.SUPPLIER))

        assert erp.logins == 2

    def test_metrics_record_outcomes(self, erp, orchestrator, metrics):
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1"), ac_supplier("S2")]

        asyncio.run(orchestrator.execute(EntityType.SUPPLIER))
        summary = metrics.get_summary()

        assert summary["runs"]["completed"] == 1
        assert summary["runs"]["in_progress"] == 0
        assert summary["records"]["by_entity"]["supplier"]["created"] == 2


# =============================================================================
# Push
# =============================================================================

def add_suppliers(store, *codes):
    return [
        store.insert_record(SUPPLIERS, {"supplier_code": code, "company_name": f"Supplier {code}"})
        for code in codes
    ]


class TestPush:

    def test_one_failure_makes_the_run_partial(self, erp, store, sync_log, orchestrator):
        add_suppliers(store, "S1", "S2", "S3")
        erp.create_errors["S2"] = ERPError("API error 500: boom", 500)
        erp.update_errors["S2"] = ERPError("API error 500: still broken", 500)

        result = asyncio.run(orchestrator.push(EntityType.SUPPLIER))

        assert result.direction == SyncDirection.PUSH
        assert result.created == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert "S2" in result.errors[0]

        entry = sync_log.query()[0]
        assert entry.reference_id == "supplier_push"
        assert entry.sync_status == SyncStatus.PARTIAL
        assert "S2" in entry.error_message

        assert store.find_one(SUPPLIERS, supplier_code="S1")["autocount_synced"] is True
        assert not store.find_one(SUPPLIERS, supplier_code="S2").get("autocount_synced")

    def test_already_exists_falls_back_to_update(self, erp, store, orchestrator):
        add_suppliers(store, "S1")
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1", companyName="Stale")]

        result = asyncio.run(orchestrator.push(EntityType.SUPPLIER))

        assert result.updated == 1
        assert result.created == 0
        assert result.succeeded
        assert ("update", EntityType.SUPPLIER, "S1") in erp.calls
        assert erp.remote[EntityType.SUPPLIER][0]["companyName"] == "Supplier S1"

    def test_update_not_found_reports_the_create_error(self, erp, store, orchestrator):
        add_suppliers(store, "S1")
        erp.create_errors["S1"] = ERPError("API error 400: credit terms invalid", 400)

        result = asyncio.run(orchestrator.push(EntityType.SUPPLIER))

        assert result.failed == 1
        assert "credit terms invalid" in result.errors[0]
        assert "not found" not in result.errors[0]

    def test_push_records_item_code(self, erp, store, orchestrator):
        store.insert_record(COMPONENTS, {"sku": "NEW-1", "name": "New part", "stock_quantity": Decimal("0")})

        result = asyncio.run(orchestrator.push(EntityType.ITEM))

        assert result.created == 1
        item = by_code(store, "NEW-1")
        assert item["autocount_item_code"] == "NEW-1"
        assert item["autocount_synced"] is True
        assert erp.remote[EntityType.ITEM][0]["code"] == "NEW-1"

    def test_push_selected_records_only(self, erp, store, orchestrator):
        s1, s2 = add_suppliers(store, "S1", "S2")

        result = asyncio.run(orchestrator.push(EntityType.SUPPLIER, record_ids=[s2["id"]]))

        assert result.created == 1
        assert [r["code"] for r in erp.remote[EntityType.SUPPLIER]] == ["S2"]

    def test_purchase_order_push_joins_supplier_and_lines(self, erp, store, orchestrator):
        supplier = add_suppliers(store, "S1")[0]
        component = store.insert_record(COMPONENTS, {"sku": "A", "autocount_item_code": "AC-A", "name": "Part A", "unit": "box"})
        po = store.insert_record(PURCHASE_ORDERS, {"po_number": "PO-9", "supplier_id": supplier["id"], "status": "approved"})
        store.insert_record(PURCHASE_ORDER_LINES, {
            "purchase_order_id": po["id"],
            "component_id": component["id"],
            "line_number": 1,
            "quantity": Decimal("5"),
            "unit_price": Decimal("2"),
        })

        result = asyncio.run(orchestrator.push(EntityType.PURCHASE_ORDER))

        assert result.created == 1
        pushed = erp.remote[EntityType.PURCHASE_ORDER][0]
        assert pushed["SupplierCode"] == "S1"
        assert pushed["Details"][0]["ItemCode"] == "AC-A"
        assert pushed["Details"][0]["UOM"] == "box"
        assert store.get_record(PURCHASE_ORDERS, po["id"])["autocount_doc_no"] == "PO-9"

    def test_local_stamp_failure_needs_reconcile(self, erp, sync_log, metrics):
        store = FailingWritesStore(SUPPLIERS, fail_updates=True)
        orchestrator = SyncOrchestrator(lambda: erp, store, sync_log, metrics=metrics)
        add_suppliers(store, "S1")

        result = asyncio.run(orchestrator.push(EntityType.SUPPLIER))

        assert result.failed == 1
        assert result.needs_reconcile == ["S1"]
        assert [r["code"] for r in erp.remote[EntityType.SUPPLIER]] == ["S1"]

    def test_push_auth_failure(self, erp, store, sync_log, orchestrator):
        add_suppliers(store, "S1")
        erp.fail_login = True

        with pytest.raises(AuthenticationFailure):
            asyncio.run(orchestrator.push(EntityType.SUPPLIER))

        assert sync_log.query()[0].reference_id == "supplier_push"
        assert sync_log.query()[0].sync_status == SyncStatus.FAILED
        assert erp.calls == []


class TestConnection:

    def test_connected(self, orchestrator):
        status = asyncio.run(orchestrator.test_connection())
        assert status["connected"] is True

    def test_login_rejected(self, erp, orchestrator):
        erp.fail_login = True
        status = asyncio.run(orchestrator.test_connection())
        assert status["connected"] is False
        assert "authentication" in status["message"].lower()
