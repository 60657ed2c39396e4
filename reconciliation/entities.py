"""Entity registry.

One EntitySpec per entity class ties together everything the generic
orchestrator needs: the local collection, the field table, the sync log
reference type, and the few per-entity hooks (foreign-key resolution,
post-insert side effects, joins for a push). Adding an entity class is a
new table entry, not new orchestration code.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from connectors.autocount.ac_mapping import (
    ITEM_MAPPER,
    PURCHASE_ORDER_MAPPER,
    SUPPLIER_MAPPER,
)
from core.mapping.engine import EntityMapper, MappingError
from core.models.records import EntityType
from core.models.stock import MovementType, StockMovement
from core.models.sync_log import ReferenceType
from core.observability.logging import get_logger
from storage.local_store import (
    COMPONENTS,
    PURCHASE_ORDER_LINES,
    PURCHASE_ORDERS,
    SUPPLIERS,
    LocalStore,
)

logger = get_logger(__name__)

Context = Dict[str, Any]


def _no_context(store: LocalStore) -> Context:
    return {}


def _no_resolve(shape: Dict[str, Any], context: Context) -> Dict[str, Any]:
    return {}


def _no_after_insert(store: LocalStore, record: Dict[str, Any], shape: Dict[str, Any], context: Context) -> None:
    return None


def _as_is(store: LocalStore, record: Dict[str, Any]) -> Dict[str, Any]:
    return record


@dataclass
class EntitySpec:
    """Everything the orchestrator needs to sync one entity class.

    Attributes:
        entity_type: Entity class
        collection: Local store collection holding the records
        reference_type: Sync log reference type for this class
        mapper: Field table
        transient_fields: Keys of the local shape that are not columns and
            must be stripped before insert/update
        remote_id_field: Local column that records the ERP's id after a push
        build_context: Loads lookup tables once per run
        resolve: Extra column values for a create (foreign keys); raises
            MappingError to skip the record
        after_insert: Side effects after a local insert (ledger, lines)
        load_for_push: Joins related data onto a local record before it is
            translated for the ERP
    """
    entity_type: EntityType
    collection: str
    reference_type: ReferenceType
    mapper: EntityMapper
    transient_fields: Tuple[str, ...] = ()
    remote_id_field: Optional[str] = None
    build_context: Callable[[LocalStore], Context] = _no_context
    resolve: Callable[[Dict[str, Any], Context], Dict[str, Any]] = _no_resolve
    after_insert: Callable[[LocalStore, Dict[str, Any], Dict[str, Any], Context], None] = _no_after_insert
    load_for_push: Callable[[LocalStore, Dict[str, Any]], Dict[str, Any]] = _as_is

    @property
    def label(self) -> str:
        return self.mapper.label

    def columns(self, shape: Dict[str, Any]) -> Dict[str, Any]:
        """Local shape without the transient fields."""
        return {k: v for k, v in shape.items() if k not in self.transient_fields}


# =============================================================================
# Items
# =============================================================================

def _item_resolve(shape: Dict[str, Any], context: Context) -> Dict[str, Any]:
    # Cached total starts at zero; the opening balance movement moves it
    return {"stock_quantity": Decimal("0"), "autocount_synced": True}


def _item_after_insert(store: LocalStore, record: Dict[str, Any], shape: Dict[str, Any], context: Context) -> None:
    opening = shape.get("opening_balance")
    if opening is None or opening <= 0:
        return
    cost = shape.get("cost_per_unit")
    store.append_movement(StockMovement(
        item_id=record["id"],
        movement_type=MovementType.OPENING_BALANCE.value,
        quantity=opening,
        unit_cost=cost if cost else None,
        batch_number=f"OPEN-{record.get('autocount_item_code') or record.get('sku')}",
        notes="Opening balance from AutoCount",
        autocount_synced=True,
    ))


ITEM_SPEC = EntitySpec(
    entity_type=EntityType.ITEM,
    collection=COMPONENTS,
    reference_type=ReferenceType.INVENTORY,
    mapper=ITEM_MAPPER,
    transient_fields=("opening_balance",),
    remote_id_field="autocount_item_code",
    resolve=_item_resolve,
    after_insert=_item_after_insert,
)


# =============================================================================
# Suppliers
# =============================================================================

def _supplier_resolve(shape: Dict[str, Any], context: Context) -> Dict[str, Any]:
    return {"autocount_synced": True}


SUPPLIER_SPEC = EntitySpec(
    entity_type=EntityType.SUPPLIER,
    collection=SUPPLIERS,
    reference_type=ReferenceType.SUPPLIER,
    mapper=SUPPLIER_MAPPER,
    resolve=_supplier_resolve,
)


# =============================================================================
# Purchase orders
# =============================================================================

def _po_context(store: LocalStore) -> Context:
    components: Dict[str, Dict[str, Any]] = {}
    for component in store.list_records(COMPONENTS):
        for key in ("sku", "autocount_item_code"):
            if component.get(key):
                components[component[key]] = component
    return {
        "suppliers": {s["supplier_code"]: s for s in store.list_records(SUPPLIERS) if s.get("supplier_code")},
        "components": components,
    }


def _po_resolve(shape: Dict[str, Any], context: Context) -> Dict[str, Any]:
    code = shape.get("supplier_code")
    supplier = context["suppliers"].get(code) if code else None
    if supplier is None:
        raise MappingError(
            shape.get("po_number") or "<no key>",
            f"supplier {code or '<none>'} not found locally; sync suppliers first",
        )
    return {"supplier_id": supplier["id"]}


def _po_after_insert(store: LocalStore, record: Dict[str, Any], shape: Dict[str, Any], context: Context) -> None:
    for line in shape.get("lines") or []:
        component = context["components"].get(line.get("item_code"))
        if component is None:
            logger.warning(
                f"PO {record.get('po_number')}: dropping line {line.get('line_number')}, "
                f"item {line.get('item_code')} not found locally"
            )
            continue
        store.insert_record(PURCHASE_ORDER_LINES, {
            "purchase_order_id": record["id"],
            "component_id": component["id"],
            "line_number": line.get("line_number"),
            "quantity": line.get("quantity"),
            "unit_price": line.get("unit_price"),
            "uom": line.get("uom"),
            "line_remarks": line.get("line_remarks"),
        })


def _po_load_for_push(store: LocalStore, record: Dict[str, Any]) -> Dict[str, Any]:
    joined = dict(record)
    supplier = store.get_record(SUPPLIERS, record["supplier_id"]) if record.get("supplier_id") else None
    joined["supplier_code"] = supplier.get("supplier_code") if supplier else None

    lines = []
    for line in sorted(
        store.list_records(PURCHASE_ORDER_LINES, purchase_order_id=record["id"]),
        key=lambda l: l.get("line_number") or 0,
    ):
        component = store.get_record(COMPONENTS, line["component_id"]) if line.get("component_id") else None
        lines.append({
            **line,
            "item_code": (component.get("autocount_item_code") or component.get("sku")) if component else None,
            "item_name": component.get("name") if component else None,
            "item_unit": component.get("unit") if component else None,
        })
    joined["lines"] = lines
    return joined


PURCHASE_ORDER_SPEC = EntitySpec(
    entity_type=EntityType.PURCHASE_ORDER,
    collection=PURCHASE_ORDERS,
    reference_type=ReferenceType.PURCHASE_ORDER,
    mapper=PURCHASE_ORDER_MAPPER,
    transient_fields=("supplier_code", "lines"),
    remote_id_field="autocount_doc_no",
    build_context=_po_context,
    resolve=_po_resolve,
    after_insert=_po_after_insert,
    load_for_push=_po_load_for_push,
)


ENTITY_SPECS: Dict[EntityType, EntitySpec] = {
    EntityType.ITEM: ITEM_SPEC,
    EntityType.SUPPLIER: SUPPLIER_SPEC,
    EntityType.PURCHASE_ORDER: PURCHASE_ORDER_SPEC,
}

SPECS_BY_REFERENCE: Dict[str, EntitySpec] = {
    spec.reference_type.value: spec for spec in ENTITY_SPECS.values()
}


def get_entity_spec(entity_type: EntityType) -> EntitySpec:
    return ENTITY_SPECS[EntityType(entity_type)]
