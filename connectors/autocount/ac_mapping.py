"""AutoCount field tables.

One EntityMapper per entity class, translating between the local store's
collections (components, suppliers, purchase_orders) and the AutoCount
gateway's records. Field lists follow what the gateway exposes; local-only
fields (ids, sync stamps, stock_quantity) never appear here and so are never
touched by an update.
"""

from decimal import Decimal
from typing import Any, Dict, List

from connectors.autocount.ac_models import ACItem, ACPurchaseOrder, ACSupplier
from core.mapping.engine import EntityMapper, FieldMapping, FieldType
from core.models.records import EntityType


# =============================================================================
# Items (components)
# =============================================================================

def _item_derive_local(item: ACItem) -> Dict[str, Any]:
    # stockBalance seeds the ledger once, as an opening balance on create
    return {
        "description": item.description,
        "opening_balance": item.stockBalance,
    }


def _item_derive_remote(local: Dict[str, Any]) -> Dict[str, Any]:
    return {"description": local.get("description") or local.get("name")}


ITEM_MAPPER = EntityMapper(
    label="item",
    remote_model=ACItem,
    key_remote_field="code",
    key_local_fields=("autocount_item_code", "sku"),
    label_field="name",
    fields=[
        FieldMapping("name", "description"),
        FieldMapping("item_group", "itemGroup"),
        FieldMapping("item_type", "itemType", default="CONSUMABLE"),
        FieldMapping("unit", "baseUOM", default="unit"),
        FieldMapping("stock_control", "stockControl", FieldType.BOOLEAN, default=True),
        FieldMapping("has_batch_no", "hasBatchNo", FieldType.BOOLEAN, default=False),
        FieldMapping("cost_per_unit", "costPerUnit", FieldType.NUMBER),
        FieldMapping("price", "price", FieldType.NUMBER),
    ],
    derive_local=_item_derive_local,
    derive_remote=_item_derive_remote,
)


# =============================================================================
# Suppliers (creditors)
# =============================================================================

SUPPLIER_MAPPER = EntityMapper(
    label="supplier",
    remote_model=ACSupplier,
    key_remote_field="code",
    key_local_fields=("supplier_code",),
    label_field="company_name",
    fields=[
        FieldMapping("company_name", "companyName"),
        FieldMapping("contact_person", "contactPerson"),
        FieldMapping("phone", "phone"),
        FieldMapping("email", "email"),
        FieldMapping("address", "address"),
        FieldMapping("credit_terms", "creditTerms"),
        FieldMapping("is_active", "isActive", FieldType.BOOLEAN, default=True),
    ],
)


# =============================================================================
# Purchase orders
# =============================================================================

PO_STATUS_CANCELLED = "cancelled"
PO_STATUS_APPROVED = "approved"


def _status_from_cancelled(is_cancelled) -> str:
    return PO_STATUS_CANCELLED if is_cancelled else PO_STATUS_APPROVED


def _cancelled_from_status(status) -> bool:
    return (status or "").strip().lower() == PO_STATUS_CANCELLED


def _po_derive_local(po: ACPurchaseOrder) -> Dict[str, Any]:
    total = sum(
        ((line.Quantity or Decimal("0")) * (line.UnitPrice or Decimal("0")) for line in po.Details),
        Decimal("0"),
    )
    lines: List[Dict[str, Any]] = [
        {
            "line_number": line.LineNumber if line.LineNumber is not None else i + 1,
            "item_code": line.ItemCode,
            "quantity": line.Quantity or Decimal("0"),
            "unit_price": line.UnitPrice or Decimal("0"),
            "uom": line.UOM,
            "line_remarks": line.LineRemarks,
        }
        for i, line in enumerate(po.Details)
    ]
    return {
        "supplier_code": po.SupplierCode,
        "total_amount": total,
        "autocount_synced": True,
        "lines": lines,
    }


def _po_derive_remote(local: Dict[str, Any]) -> Dict[str, Any]:
    """Header extras and detail lines for a push.

    Expects ``supplier_code`` and ``lines`` (each with ``item_code``) to be
    joined onto the local record by the caller.
    """
    doc_date = local.get("doc_date")
    details = []
    for line in local.get("lines") or []:
        details.append({
            "LineNumber": line.get("line_number"),
            "ItemCode": line.get("item_code") or "",
            "Description": line.get("item_name") or "",
            "Quantity": line.get("quantity"),
            "UnitPrice": line.get("unit_price"),
            "UOM": line.get("uom") or line.get("item_unit") or "unit",
            "LineRemarks": line.get("line_remarks") or "",
        })
    return {
        "SupplierCode": local.get("supplier_code") or "",
        "DeliveryDate": local.get("delivery_date") or doc_date,
        "Description": local.get("remarks") or "",
        "Details": details,
    }


PURCHASE_ORDER_MAPPER = EntityMapper(
    label="purchase order",
    remote_model=ACPurchaseOrder,
    key_remote_field="DocNo",
    key_local_fields=("autocount_doc_no", "po_number"),
    label_field="po_number",
    fields=[
        FieldMapping(
            "status", "IsCancelled",
            to_local=_status_from_cancelled,
            to_remote=_cancelled_from_status,
        ),
        FieldMapping("doc_date", "DocDate", FieldType.DATE, syncable=False),
        FieldMapping("delivery_date", "DeliveryDate", FieldType.DATE, syncable=False, push=False),
        FieldMapping("remarks", "Description", syncable=False, push=False),
    ],
    derive_local=_po_derive_local,
    derive_remote=_po_derive_remote,
)


MAPPERS: Dict[EntityType, EntityMapper] = {
    EntityType.ITEM: ITEM_MAPPER,
    EntityType.SUPPLIER: SUPPLIER_MAPPER,
    EntityType.PURCHASE_ORDER: PURCHASE_ORDER_MAPPER,
}


def get_mapper(entity_type: EntityType) -> EntityMapper:
    return MAPPERS[EntityType(entity_type)]
