"""ERP Connectors - Pluggable ERP system integrations.

This package contains the abstract ERP interface and the AutoCount
implementation. It handles:
- ERP-specific authentication
- HTTP communication with timeouts and retries
- Wire-shape validation of remote records

Key Design Principle:
- The sync engine depends ONLY on the ERPConnector interface
- Connector errors are the ERPError family; the engine maps them to its own
  taxonomy

To add a new ERP:
1. Create a new folder (e.g., sap/)
2. Implement ERPConnector interface
3. Register using @register_connector decorator
"""

from connectors.erp_base import (
    # Core interface
    ERPConnector,
    ERPConfig,
    ERPConnectionStatus,
    RemoteWriteResult,

    # Errors
    ERPError,
    ERPAuthenticationError,
    ERPNotFoundError,
    ERPConflictError,
    ERPTimeoutError,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)

# Registers the "autocount" connector type
import connectors.autocount  # noqa: F401

__all__ = [
    # Core interface
    "ERPConnector",
    "ERPConfig",
    "ERPConnectionStatus",
    "RemoteWriteResult",

    # Errors
    "ERPError",
    "ERPAuthenticationError",
    "ERPNotFoundError",
    "ERPConflictError",
    "ERPTimeoutError",

    # Factory
    "create_connector",
    "register_connector",
    "list_available_connectors",
]
