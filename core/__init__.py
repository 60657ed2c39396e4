"""Core module - ERP-neutral sync models, mapping, audit and observability.

This module contains the record/stock/sync-log models, the field mapping
engine, the sync log backends and the logging/metrics stack. It knows nothing
about AutoCount's wire format.

AutoCount-specific logic (endpoints, auth, error translation) belongs in /connectors/.
"""

__version__ = "1.0.0"
