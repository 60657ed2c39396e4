"""Field mapping engine.

Provides a table-driven mapping system that translates records between the
local store's shape and an ERP's wire shape, in both directions.

This is ERP-neutral - the actual field tables are provided by connectors
(see connectors/autocount/ac_mapping.py).

Canonical normalization (used whenever two values are compared):
- TEXT: None, "" and whitespace-only are all "no value" (None); other
  values are compared stripped
- NUMBER: None and "" are zero; everything else compares as Decimal
- BOOLEAN: None takes the field's default (False when it has none)
- DATE: ISO strings and datetimes compare as dates
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError


class FieldType(str, Enum):
    """Comparison semantics of a mapped field."""
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"


class MappingError(ValueError):
    """A record could not be translated between shapes."""

    def __init__(self, key: str, message: str):
        super().__init__(message)
        self.key = key


def normalize(value: Any, field_type: FieldType, default: Any = None) -> Any:
    """Canonical form of a value for equality comparison.

    Raises:
        ValueError: Value cannot be read as the field type
    """
    if field_type == FieldType.TEXT:
        if value is None:
            return None
        text = value.strip() if isinstance(value, str) else str(value).strip()
        return text or None

    if field_type == FieldType.NUMBER:
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return Decimal("0")
        if isinstance(value, Decimal):
            return value.normalize() if value else Decimal("0")
        try:
            number = Decimal(str(value).strip().replace(",", ""))
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}")
        return number.normalize() if number else Decimal("0")

    if field_type == FieldType.BOOLEAN:
        if value is None:
            return bool(default) if default is not None else False
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes", "y", "t"):
                return True
            if lowered in ("false", "0", "no", "n", "f", ""):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        return bool(value)

    if field_type == FieldType.DATE:
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value).strip()[:10])

    raise ValueError(f"Unknown field type: {field_type}")


@dataclass(frozen=True)
class FieldMapping:
    """One local field <-> one remote field.

    ``syncable`` fields are compared by the diff engine and written on
    update. Non-syncable fields are only written when the local record is
    created. ``push`` controls whether the field goes into the remote
    payload.
    """
    local_field: str
    remote_field: str
    field_type: FieldType = FieldType.TEXT
    syncable: bool = True
    push: bool = True
    default: Any = None
    to_local: Optional[Callable[[Any], Any]] = None
    to_remote: Optional[Callable[[Any], Any]] = None

    def local_value(self, remote_value: Any) -> Any:
        """Remote value converted to what the local store holds."""
        value = self.to_local(remote_value) if self.to_local else remote_value
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return self.default if self.default is not None else value
        return value

    def remote_value(self, local_value: Any) -> Any:
        """Local value converted to what the ERP expects."""
        if local_value is None and self.default is not None:
            local_value = self.default
        if self.to_remote:
            return self.to_remote(local_value)
        return local_value

    def canonical(self, value: Any) -> Any:
        return normalize(value, self.field_type, self.default)

    def differs(self, local_value: Any, mapped_value: Any) -> bool:
        """True when the two values are not equal under canonical normalization."""
        return self.canonical(local_value) != self.canonical(mapped_value)


@dataclass
class EntityMapper:
    """Explicit field table for one entity class.

    Attributes:
        label: Human name used in messages ("item", "supplier")
        remote_model: Pydantic model validating the ERP's record shape
        key_remote_field: Natural key field on the remote record
        key_local_fields: Local fields that may hold the natural key, in
            match order
        fields: Field table
        label_field: Local field shown as the record's display name
        derive_local: Extra local values computed from the validated remote
            model (transient or computed fields)
        derive_remote: Extra remote values computed from the local record
    """
    label: str
    remote_model: Type[BaseModel]
    key_remote_field: str
    key_local_fields: Tuple[str, ...]
    fields: List[FieldMapping]
    label_field: Optional[str] = None
    derive_local: Optional[Callable[[BaseModel], Dict[str, Any]]] = None
    derive_remote: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None

    # =========================================================================
    # Keys
    # =========================================================================

    def remote_key(self, remote: Dict[str, Any]) -> str:
        """Natural key of a raw remote record ("" when missing)."""
        value = remote.get(self.key_remote_field) if isinstance(remote, dict) else None
        return str(value).strip() if value not in (None, "") else ""

    def local_key(self, local: Dict[str, Any]) -> Optional[str]:
        """Natural key of a local record: first non-empty key field."""
        for name in self.key_local_fields:
            value = local.get(name)
            if value not in (None, ""):
                return str(value).strip()
        return None

    def index_local(self, records: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Index local records by every key field.

        Earlier key fields win when two records claim the same key.
        """
        index: Dict[str, Dict[str, Any]] = {}
        records = list(records)
        for name in reversed(self.key_local_fields):
            for record in records:
                value = record.get(name)
                if value not in (None, ""):
                    index[str(value).strip()] = record
        return index

    # =========================================================================
    # Field tables
    # =========================================================================

    @property
    def syncable_fields(self) -> List[FieldMapping]:
        return [f for f in self.fields if f.syncable]

    def mapping_for(self, local_field: str) -> Optional[FieldMapping]:
        for f in self.fields:
            if f.local_field == local_field:
                return f
        return None

    # =========================================================================
    # Translation
    # =========================================================================

    def parse_remote(self, remote: Dict[str, Any]) -> BaseModel:
        """Validate a raw remote record.

        Raises:
            MappingError: Record is missing its key or has unreadable fields
        """
        key = self.remote_key(remote) or "<no key>"
        if not isinstance(remote, dict):
            raise MappingError(key, f"{self.label} record is not an object")
        try:
            return self.remote_model.model_validate(remote)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise MappingError(key, f"cannot read {self.label}: {problems}")

    def to_local_shape(self, remote: Dict[str, Any]) -> Dict[str, Any]:
        """Translate a remote record into local field values.

        Unmapped remote fields are ignored. The result always carries the
        natural key in every key field.

        Raises:
            MappingError: Record cannot be validated or a derived value fails
        """
        model = self.parse_remote(remote)
        key = str(getattr(model, self.key_remote_field)).strip()
        if not key:
            raise MappingError("<no key>", f"{self.label} record has an empty {self.key_remote_field}")

        shape: Dict[str, Any] = {name: key for name in self.key_local_fields}
        for mapping in self.fields:
            shape[mapping.local_field] = mapping.local_value(getattr(model, mapping.remote_field, None))

        if self.derive_local:
            try:
                shape.update(self.derive_local(model))
            except (ArithmeticError, TypeError, ValueError) as e:
                raise MappingError(key, f"cannot derive {self.label} fields: {e}")
        return shape

    def to_remote_shape(self, local: Dict[str, Any]) -> Dict[str, Any]:
        """Translate a local record into the ERP payload.

        Local fields without a mapping are never sent.

        Raises:
            MappingError: Local record has no natural key
        """
        key = self.local_key(local)
        if not key:
            raise MappingError(
                str(local.get("id", "<unknown>")),
                f"{self.label} has no {' or '.join(self.key_local_fields)}",
            )

        payload: Dict[str, Any] = {self.key_remote_field: key}
        for mapping in self.fields:
            if mapping.push:
                payload[mapping.remote_field] = mapping.remote_value(local.get(mapping.local_field))

        if self.derive_remote:
            payload.update(self.derive_remote(local))
        return payload

    def display_label(self, shape: Dict[str, Any]) -> Optional[str]:
        if not self.label_field:
            return None
        value = shape.get(self.label_field)
        return str(value) if value not in (None, "") else None
