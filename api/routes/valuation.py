"""Inventory valuation endpoints."""

from fastapi import APIRouter, HTTPException

from core.models.stock import ItemValuation, OnHandCheck, ValuationReport
from reconciliation.runtime import get_runtime


router = APIRouter()


@router.get("", response_model=ValuationReport)
async def valuation_report() -> ValuationReport:
    """FIFO valuation of every item with stock on hand.

    Items that cannot be valued (no costed receipts) are listed under
    ``unvalued`` and excluded from ``grandTotal``.
    """
    return get_runtime().valuation.valuation_report()


@router.get("/{item_id}", response_model=ItemValuation)
async def valuate_item(item_id: str) -> ItemValuation:
    """FIFO valuation of one item."""
    valuation = get_runtime().valuation.valuate(item_id)
    if valuation is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return valuation


@router.get("/{item_id}/on-hand-check", response_model=OnHandCheck)
async def check_on_hand(item_id: str) -> OnHandCheck:
    """Compare the item's cached stock total with a full ledger replay."""
    check = get_runtime().valuation.check_on_hand(item_id)
    if check is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return check
