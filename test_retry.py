"""Retry dispatcher tests."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from core.models.stock import StockMovement
from core.models.sync_log import (
    ReferenceType,
    SyncLogEntry,
    SyncStatus,
    SyncType,
    new_sync_log_entry,
)
from core.models.records import EntityType
from reconciliation.errors import SyncLogNotFound, UnknownSyncTypeError
from reconciliation.retry import RETRY_HANDLERS, RetryStatus, build_adjustment
from storage.local_store import COMPONENTS, STOCK_MOVEMENTS, SUPPLIERS
from conftest import ac_supplier


def add_movement(store, quantity="5", movement_type="receipt", item_code="A"):
    item = store.find_one(COMPONENTS, sku=item_code) or store.insert_record(
        COMPONENTS,
        {"sku": item_code, "autocount_item_code": item_code, "name": f"Part {item_code}", "stock_quantity": Decimal("0")},
    )
    return store.append_movement(StockMovement(
        item_id=item["id"],
        movement_type=movement_type,
        quantity=Decimal(quantity),
        unit_cost=Decimal("2"),
    ))


def log_failed(sync_log, reference_id, reference_type, sync_type, status=SyncStatus.FAILED):
    return sync_log.append(new_sync_log_entry(
        reference_id=reference_id,
        reference_type=reference_type,
        sync_type=sync_type,
        sync_status=status,
        error_message="AutoCount timed out",
    ))


class TestMovementRetry:

    def test_failed_goods_receipt_is_posted(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store)
        entry = log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.success
        assert result.status == RetryStatus.SUCCESS
        assert result.remote_doc_no == "SA-00001"
        assert result.retry_count == 1

        posted = erp.adjustments[0]
        assert posted["ItemCode"] == "A"
        assert posted["AdjustmentType"] == "IN"
        assert posted["Reason"] == "GoodsReceipt"
        assert posted["Location"] == "WH1"
        assert posted["Quantity"] == Decimal("5")

        settled = sync_log.get(entry.id)
        assert settled.sync_status == SyncStatus.SUCCESS
        assert settled.autocount_doc_no == "SA-00001"
        assert settled.error_message is None
        assert settled.synced_at is not None

        row = store.get_record(STOCK_MOVEMENTS, movement.id)
        assert row["autocount_synced"] is True
        assert row["autocount_doc_no"] == "SA-00001"

    def test_retry_by_reference_id(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store)
        log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.PRODUCTION_COMPLETE)

        result = asyncio.run(dispatcher.retry(movement.id))

        assert result.success
        assert erp.adjustments[0]["Reason"] == "Production"

    def test_already_posted_movement_is_not_posted_again(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store)
        store.mark_movement_synced(movement.id, "SA-OLD")
        entry = log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.GRN)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.success
        assert result.remote_doc_no == "SA-OLD"
        assert erp.adjustments == []
        assert erp.logins == 0

    def test_missing_movement_fails_the_retry(self, erp, sync_log, dispatcher):
        entry = log_failed(sync_log, "gone", ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.status == RetryStatus.FAILED
        assert "not found" in result.error
        assert sync_log.get(entry.id).sync_status == SyncStatus.FAILED

    def test_submit_logs_and_posts_first_attempt(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store, quantity="-3", movement_type="adjustment")

        result = asyncio.run(dispatcher.submit(SyncType.STOCK_ADJUSTMENT, ReferenceType.STOCK_MOVEMENT, movement.id))

        assert result.success
        assert erp.adjustments[0]["AdjustmentType"] == "OUT"
        assert erp.adjustments[0]["Quantity"] == Decimal("3")
        entry = sync_log.get(result.sync_log_id)
        assert entry.sync_status == SyncStatus.SUCCESS
        assert entry.retry_count == 0


class TestRetryRules:

    def test_success_entry_is_nothing_to_retry(self, erp, store, sync_log, dispatcher, metrics):
        movement = add_movement(store)
        entry = log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT, SyncStatus.SUCCESS)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert not result.success
        assert result.status == RetryStatus.NOTHING_TO_RETRY
        assert erp.logins == 0
        assert erp.calls == []
        assert sync_log.get(entry.id).retry_count == 0
        assert metrics.get_summary()["retries"]["refused"] == 1

    def test_unknown_reference(self, dispatcher):
        with pytest.raises(SyncLogNotFound):
            asyncio.run(dispatcher.retry("no-such-entry"))

    def test_unknown_sync_type(self, erp, sync_log, dispatcher):
        entry = sync_log.append(SyncLogEntry(
            reference_id="x",
            reference_type="inventory",
            sync_type="teleport",
            sync_status=SyncStatus.FAILED,
        ))

        with pytest.raises(UnknownSyncTypeError):
            asyncio.run(dispatcher.retry(entry.id))
        assert sync_log.get(entry.id).sync_status == SyncStatus.FAILED
        assert erp.logins == 0

    def test_success_entry_of_unknown_type_is_nothing_to_retry(self, erp, sync_log, dispatcher):
        entry = sync_log.append(SyncLogEntry(
            reference_id="x",
            reference_type="inventory",
            sync_type="teleport",
            sync_status=SyncStatus.SUCCESS,
        ))

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.status == RetryStatus.NOTHING_TO_RETRY
        assert erp.logins == 0

    def test_pending_entry_is_in_progress(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store)
        entry = log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT, SyncStatus.PENDING)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.status == RetryStatus.IN_PROGRESS
        assert erp.adjustments == []

    def test_failed_retry_stays_retryable(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store)
        entry = log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT)
        erp.fail_login = True

        first = asyncio.run(dispatcher.retry(entry.id))

        assert first.status == RetryStatus.FAILED
        assert "authentication" in first.error.lower()
        failed = sync_log.get(entry.id)
        assert failed.sync_status == SyncStatus.FAILED
        assert failed.retry_count == 1

        erp.fail_login = False
        second = asyncio.run(dispatcher.retry(entry.id))

        assert second.success
        assert second.retry_count == 2

    def test_concurrent_retries_dispatch_once(self, erp, store, sync_log, dispatcher):
        movement = add_movement(store)
        entry = log_failed(sync_log, movement.id, ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT)

        async def both():
            return await asyncio.gather(dispatcher.retry(entry.id), dispatcher.retry(entry.id))

        results = asyncio.run(both())

        assert sorted(r.status.value for r in results) == ["nothing_to_retry", "success"]
        assert len(erp.adjustments) == 1
        assert sync_log.get(entry.id).retry_count == 1

    def test_entry_locks_are_released(self, erp, store, sync_log, dispatcher):
        entries = [
            log_failed(sync_log, add_movement(store, item_code=code).id, ReferenceType.STOCK_MOVEMENT, SyncType.GOODS_RECEIPT)
            for code in ("A", "B")
        ]

        async def retry_all():
            await asyncio.gather(*(dispatcher.retry(e.id) for e in entries for _ in range(2)))
            await dispatcher.retry(entries[0].id)
            return dict(dispatcher._locks[asyncio.get_running_loop()])

        assert asyncio.run(retry_all()) == {}
        assert len(erp.adjustments) == 2

    def test_every_sync_type_has_a_handler(self):
        assert set(RETRY_HANDLERS) == set(SyncType)


class TestRecordAndRunRetry:

    def test_failed_create_is_pushed_again(self, erp, store, sync_log, dispatcher):
        supplier = store.insert_record(SUPPLIERS, {"supplier_code": "S1", "company_name": "Acme"})
        entry = log_failed(sync_log, supplier["id"], ReferenceType.SUPPLIER, SyncType.CREATE)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.success
        assert result.remote_doc_no == "S1"
        assert [r["code"] for r in erp.remote[EntityType.SUPPLIER]] == ["S1"]
        assert store.get_record(SUPPLIERS, supplier["id"])["autocount_synced"] is True

    def test_record_found_by_natural_key(self, erp, store, sync_log, dispatcher):
        store.insert_record(SUPPLIERS, {"supplier_code": "S1", "company_name": "Acme"})
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1")]
        entry = log_failed(sync_log, "S1", ReferenceType.SUPPLIER, SyncType.UPDATE)

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.success
        assert ("update", EntityType.SUPPLIER, "S1") in erp.calls

    def test_failed_pull_run_is_rerun_without_new_entry(self, erp, store, sync_log, dispatcher):
        entry = log_failed(sync_log, "supplier_pull", ReferenceType.SUPPLIER, SyncType.PULL, SyncStatus.PARTIAL)
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1")]

        result = asyncio.run(dispatcher.retry("supplier_pull"))

        assert result.success
        assert store.find_one(SUPPLIERS, supplier_code="S1") is not None
        assert len(sync_log.query()) == 1
        assert sync_log.get(entry.id).sync_status == SyncStatus.SUCCESS

    def test_rerun_with_bad_records_stays_partial(self, erp, sync_log, dispatcher):
        entry = log_failed(sync_log, "supplier_pull", ReferenceType.SUPPLIER, SyncType.PULL)
        erp.remote[EntityType.SUPPLIER] = [ac_supplier("S1"), {"companyName": "no code"}]

        result = asyncio.run(dispatcher.retry(entry.id))

        assert result.status == RetryStatus.PARTIAL
        assert "<no key>" in result.error
        assert sync_log.get(entry.id).sync_status == SyncStatus.PARTIAL


class TestBuildAdjustment:

    def test_production_is_always_inbound(self):
        movement = StockMovement(item_id="i", movement_type="production", quantity=Decimal("8"), created_at=datetime(2025, 3, 1))
        adjustment = build_adjustment(movement, "FG-1", SyncType.PRODUCTION_COMPLETE, "MAIN")

        assert adjustment.AdjustmentType == "IN"
        assert adjustment.Reason == "Production"
        assert adjustment.DocDate.isoformat() == "2025-03-01"

    def test_adjustment_direction_follows_sign(self):
        movement = StockMovement(item_id="i", movement_type="adjustment", quantity=Decimal("-2.5"), notes="cycle count")
        adjustment = build_adjustment(movement, "A", SyncType.STOCK_ADJUSTMENT, "MAIN")

        assert adjustment.AdjustmentType == "OUT"
        assert adjustment.Quantity == Decimal("2.5")
        assert adjustment.Description == "cycle count"
