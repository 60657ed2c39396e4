"""AutoCount data models.

These are AutoCount-specific models that map to the gateway's JSON schema.
They are separate from the local record shapes; translation between the two
lives in ac_mapping.py.

Items and suppliers use camelCase keys, purchase orders use PascalCase keys,
as the gateway returns them.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated

from core.models.stock import DecimalValue


def _as_text(value):
    """Accept numbers where the gateway sends them for text fields."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _as_date(value):
    """Accept ISO dates and datetimes ("2025-03-01T00:00:00")."""
    if value is None or isinstance(value, date):
        if isinstance(value, datetime):
            return value.date()
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        return date.fromisoformat(s[:10])
    return value


TextValue = Annotated[Optional[str], BeforeValidator(_as_text)]
DateValue = Annotated[Optional[date], BeforeValidator(_as_date)]


# =============================================================================
# AutoCount API Models
# =============================================================================

class ACBaseModel(BaseModel):
    """Base model for AutoCount API entities."""

    model_config = ConfigDict(populate_by_name=True)


class ACItem(ACBaseModel):
    """AutoCount stock item.

    Maps to: GET/POST /items, PUT /items/{code}
    """
    code: str = Field(..., alias="code")
    description: TextValue = Field(None, alias="description")
    itemGroup: TextValue = Field(None, alias="itemGroup")
    itemType: TextValue = Field(None, alias="itemType")
    baseUOM: TextValue = Field(None, alias="baseUOM")
    stockControl: Optional[bool] = Field(None, alias="stockControl")
    hasBatchNo: Optional[bool] = Field(None, alias="hasBatchNo")
    isActive: Optional[bool] = Field(None, alias="isActive")
    costPerUnit: DecimalValue = Field(None, alias="costPerUnit")
    price: DecimalValue = Field(None, alias="price")
    stockBalance: DecimalValue = Field(None, alias="stockBalance")


class ACSupplier(ACBaseModel):
    """AutoCount creditor (supplier).

    Maps to: GET/POST /suppliers, PUT /suppliers/{code}
    """
    code: str = Field(..., alias="code")
    companyName: TextValue = Field(None, alias="companyName")
    contactPerson: TextValue = Field(None, alias="contactPerson")
    phone: TextValue = Field(None, alias="phone")
    email: TextValue = Field(None, alias="email")
    address: TextValue = Field(None, alias="address")
    creditTerms: TextValue = Field(None, alias="creditTerms")
    isActive: Optional[bool] = Field(None, alias="isActive")


class ACPurchaseOrderLine(ACBaseModel):
    """AutoCount purchase order detail line."""
    LineNumber: Optional[int] = Field(None, alias="LineNumber")
    ItemCode: TextValue = Field(None, alias="ItemCode")
    Description: TextValue = Field(None, alias="Description")
    Quantity: DecimalValue = Field(None, alias="Quantity")
    UnitPrice: DecimalValue = Field(None, alias="UnitPrice")
    UOM: TextValue = Field(None, alias="UOM")
    LineRemarks: TextValue = Field(None, alias="LineRemarks")


class ACPurchaseOrder(ACBaseModel):
    """AutoCount purchase order.

    Maps to: GET/POST /purchase-orders, PUT /purchase-orders/{docNo}
    """
    DocNo: str = Field(..., alias="DocNo")
    SupplierCode: TextValue = Field(None, alias="SupplierCode")
    DocDate: DateValue = Field(None, alias="DocDate")
    DeliveryDate: DateValue = Field(None, alias="DeliveryDate")
    Description: TextValue = Field(None, alias="Description")
    IsCancelled: Optional[bool] = Field(None, alias="IsCancelled")
    Details: List[ACPurchaseOrderLine] = Field(default_factory=list, alias="Details")


class ACStockAdjustment(ACBaseModel):
    """Stock adjustment document posted for one ledger movement.

    Maps to: POST /stock-adjustments
    """
    ItemCode: str = Field(..., alias="ItemCode")
    Location: str = Field("MAIN", alias="Location")
    AdjustmentType: str = Field(..., alias="AdjustmentType")   # "IN" / "OUT"
    Quantity: DecimalValue = Field(..., alias="Quantity")
    Description: Optional[str] = Field(None, alias="Description")
    Reason: Optional[str] = Field(None, alias="Reason")
    DocDate: DateValue = Field(None, alias="DocDate")
