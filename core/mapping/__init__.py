"""Core mapping engine - table-driven record translation.

This module provides the ERP-neutral field-mapping primitives. The actual
field tables are ERP-specific and provided by connectors.
"""

from core.mapping.engine import (
    EntityMapper,
    FieldMapping,
    FieldType,
    MappingError,
    normalize,
)

__all__ = [
    "EntityMapper",
    "FieldMapping",
    "FieldType",
    "MappingError",
    "normalize",
]
