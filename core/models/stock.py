"""Stock ledger and valuation models.

The stock-movement ledger is append-only. Valuation batches and item
valuations are derived from it on demand and never stored.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


def _parse_decimal(value):
    """Parse decimal from float, int or string values coming out of the store."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a quantity")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if s == "":
            return None
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}")
    return value


DecimalValue = Annotated[Optional[Decimal], BeforeValidator(_parse_decimal)]


class MovementType(str, Enum):
    """Known ledger movement types. Unknown values are kept as plain text."""
    IN = "in"
    OUT = "out"
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    ASSEMBLY = "assembly"
    PRODUCTION = "production"
    RETURN = "return"
    OPENING_BALANCE = "opening_balance"


class StockMovement(BaseModel):
    """One ledger row for one item. Quantity is signed (negative = outbound)."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    item_id: str
    item_type: str = "component"
    movement_type: str
    quantity: DecimalValue
    unit_cost: DecimalValue = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    autocount_synced: bool = False
    autocount_doc_no: Optional[str] = None

    @property
    def is_costed_inbound(self) -> bool:
        """Inbound movement that carries a unit cost (a FIFO cost layer)."""
        return (
            self.quantity is not None
            and self.quantity > 0
            and self.unit_cost is not None
        )


class ValuationStatus(str, Enum):
    VALUED = "valued"
    UNVALUED = "unvalued"   # stock on hand but no costed inbound movements
    NO_STOCK = "no_stock"


class ValuationModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValuationBatch(ValuationModel):
    """Quantity of on-hand stock allocated to one inbound cost layer."""
    batch_number: str
    date_received: datetime
    quantity: Decimal
    unit_cost: Decimal
    batch_value: Decimal


class ItemValuation(ValuationModel):
    """FIFO valuation of one item.

    ``unvalued_quantity`` is the part of on-hand stock not covered by any
    costed inbound movement; it is reported, never priced.
    """
    item_id: str
    sku: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None
    on_hand: Decimal = Decimal("0")
    avg_cost: Decimal = Decimal("0")
    total_value: Decimal = Decimal("0")
    unvalued_quantity: Decimal = Decimal("0")
    status: ValuationStatus = ValuationStatus.VALUED
    batches: List[ValuationBatch] = Field(default_factory=list)


class ValuationReport(ValuationModel):
    """Valuation of every item with stock on hand."""
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    items: List[ItemValuation] = Field(default_factory=list)
    unvalued: List[ItemValuation] = Field(default_factory=list)
    grand_total: Decimal = Decimal("0")


class OnHandCheck(ValuationModel):
    """Cached running total compared with a full ledger replay."""
    item_id: str
    cached: Decimal
    replayed: Decimal
    drift: Decimal

    @property
    def in_sync(self) -> bool:
        return self.drift == 0
