"""FIFO inventory valuation.

Values on-hand stock against the item's inbound cost layers, oldest first.
Only reads the stock-movement ledger and the items' cached totals; nothing
here writes to the store.

Exposes:
- allocate_fifo(movements, on_hand) -> (batches, total_value, unvalued_quantity)
- ValuationEngine.valuate(item_id) -> ItemValuation
- ValuationEngine.valuation_report() -> ValuationReport
- ValuationEngine.check_on_hand(item_id) -> OnHandCheck
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.models.stock import (
    ItemValuation,
    OnHandCheck,
    StockMovement,
    ValuationBatch,
    ValuationReport,
    ValuationStatus,
)
from core.observability.logging import get_logger
from storage.local_store import COMPONENTS, LocalStore

logger = get_logger(__name__)

ZERO = Decimal("0")


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def allocate_fifo(
    movements: Iterable[StockMovement],
    on_hand: Decimal,
) -> Tuple[List[ValuationBatch], Decimal, Decimal]:
    """Allocate on-hand quantity to costed inbound layers, oldest first.

    Each layer contributes ``min(layer quantity, remaining)`` units at its
    own unit cost. Allocation stops when nothing remains or the layers run
    out; quantity beyond the last layer is returned as unvalued and is never
    priced.

    Returns:
        (batches, total value, unvalued quantity)
    """
    layers = sorted(
        (m for m in movements if m.is_costed_inbound),
        key=lambda m: m.created_at,
    )
    remaining = on_hand if on_hand > 0 else ZERO
    total = ZERO
    batches: List[ValuationBatch] = []

    for layer in layers:
        if remaining <= 0:
            break
        quantity = min(layer.quantity, remaining)
        value = quantity * layer.unit_cost
        batches.append(ValuationBatch(
            batch_number=layer.batch_number or f"MOV-{layer.id[:8]}",
            date_received=layer.created_at,
            quantity=quantity,
            unit_cost=layer.unit_cost,
            batch_value=value,
        ))
        total += value
        remaining -= quantity

    return batches, total, remaining


class ValuationEngine:
    """Derives valuations from the stock-movement ledger.

    Args:
        store: Local store holding components and stock_movements
        replay_ledger: Take on-hand from a full ledger replay instead of the
            cached ``stock_quantity`` running total
    """

    def __init__(self, store: LocalStore, replay_ledger: bool = False):
        self.store = store
        self.replay_ledger = replay_ledger

    def replay_on_hand(self, item_id: str) -> Decimal:
        """On-hand quantity recomputed from every ledger row of the item."""
        return sum((_to_decimal(m.quantity) for m in self.store.list_movements(item_id)), ZERO)

    def check_on_hand(self, item_id: str) -> Optional[OnHandCheck]:
        """Compare the cached running total with a ledger replay."""
        item = self.store.get_record(COMPONENTS, item_id)
        if item is None:
            return None
        cached = _to_decimal(item.get("stock_quantity"))
        replayed = self.replay_on_hand(item_id)
        check = OnHandCheck(item_id=item_id, cached=cached, replayed=replayed, drift=cached - replayed)
        if not check.in_sync:
            logger.warning(
                f"Cached stock for {item.get('sku') or item_id} drifted from the ledger",
                extra_fields={"cached": str(cached), "replayed": str(replayed)},
            )
        return check

    def _on_hand(self, item: Dict[str, Any]) -> Decimal:
        if self.replay_ledger:
            return self.replay_on_hand(item["id"])
        return _to_decimal(item.get("stock_quantity"))

    def _valuate_item(self, item: Dict[str, Any]) -> ItemValuation:
        on_hand = self._on_hand(item)
        valuation = ItemValuation(
            item_id=item["id"],
            sku=item.get("sku") or item.get("autocount_item_code"),
            name=item.get("name"),
            unit=item.get("unit"),
            on_hand=on_hand,
        )
        if on_hand <= 0:
            valuation.status = ValuationStatus.NO_STOCK
            return valuation

        batches, total, unvalued = allocate_fifo(self.store.list_movements(item["id"]), on_hand)
        if not batches:
            valuation.status = ValuationStatus.UNVALUED
            valuation.unvalued_quantity = on_hand
            return valuation

        valuation.batches = batches
        valuation.total_value = total
        valuation.avg_cost = total / on_hand
        valuation.unvalued_quantity = unvalued
        return valuation

    def valuate(self, item_id: str) -> Optional[ItemValuation]:
        """FIFO valuation of one item; None when the item does not exist."""
        item = self.store.get_record(COMPONENTS, item_id)
        if item is None:
            return None
        return self._valuate_item(item)

    def valuation_report(self) -> ValuationReport:
        """Every item with stock on hand.

        Items without any costed inbound movement cannot be valued; they are
        listed under ``unvalued`` and do not count toward the grand total.
        """
        report = ValuationReport()
        for item in self.store.list_records(COMPONENTS):
            valuation = self._valuate_item(item)
            if valuation.status == ValuationStatus.VALUED:
                report.items.append(valuation)
                report.grand_total += valuation.total_value
            elif valuation.status == ValuationStatus.UNVALUED:
                report.unvalued.append(valuation)
        report.items.sort(key=lambda v: v.total_value, reverse=True)
        return report
