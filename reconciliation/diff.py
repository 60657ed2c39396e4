"""Diff engine.

Classifies one remote record against the local record with the same natural
key. Pure: no I/O, no clock, no mutation of its inputs.

Exposes:
- classify(mapper, local, remote) -> RecordChange
- diff_all(mapper, local_records, remote_records) -> List[RecordChange]
"""

from typing import Any, Dict, Iterable, List, Optional

from core.mapping.engine import EntityMapper, MappingError
from core.models.records import FieldChange, RecordChange, SyncAction


def _skip(key: str, message: str, remote: Dict[str, Any]) -> RecordChange:
    return RecordChange(
        action=SyncAction.SKIP,
        key=key or "<no key>",
        error=f"{key or '<no key>'}: {message}",
        remote=remote if isinstance(remote, dict) else {},
    )


def classify(
    mapper: EntityMapper,
    local: Optional[Dict[str, Any]],
    remote: Dict[str, Any],
) -> RecordChange:
    """Classify one remote record.

    - no local record: CREATE, change set = every mapped field (old None)
    - otherwise: compare only syncable fields; UPDATE when any differ, NONE
      when none do
    - remote record that cannot be mapped: SKIP with the mapping error
    """
    try:
        shape = mapper.to_local_shape(remote)
    except MappingError as e:
        return _skip(e.key, str(e), remote)

    key = mapper.local_key(shape) or mapper.remote_key(remote)
    label = mapper.display_label(shape)

    if local is None:
        changes = {
            m.local_field: FieldChange(old=None, new=shape.get(m.local_field))
            for m in mapper.fields
        }
        return RecordChange(
            action=SyncAction.CREATE,
            key=key,
            label=label,
            changes=changes,
            local_shape=shape,
            remote=remote,
        )

    changes: Dict[str, FieldChange] = {}
    for mapping in mapper.syncable_fields:
        old = local.get(mapping.local_field)
        new = shape.get(mapping.local_field)
        try:
            if mapping.differs(old, new):
                changes[mapping.local_field] = FieldChange(old=old, new=new)
        except ValueError as e:
            return _skip(key, f"cannot compare {mapping.local_field}: {e}", remote)

    return RecordChange(
        action=SyncAction.UPDATE if changes else SyncAction.NONE,
        key=key,
        label=label or mapper.display_label(local),
        local_id=local.get("id"),
        changes=changes,
        local_shape=shape,
        remote=remote,
    )


def diff_all(
    mapper: EntityMapper,
    local_records: Iterable[Dict[str, Any]],
    remote_records: Iterable[Dict[str, Any]],
) -> List[RecordChange]:
    """Classify every remote record, in the order the ERP returned them."""
    index = mapper.index_local(local_records)
    results = []
    for remote in remote_records:
        key = mapper.remote_key(remote)
        results.append(classify(mapper, index.get(key) if key else None, remote))
    return results
