"""AutoCount Connector Package.

Implements the ERPConnector interface for the AutoCount API gateway.
"""

from connectors.autocount.ac_connector import AutoCountConnector
from connectors.autocount.ac_auth import AutoCountAuthProvider, AutoCountAuthConfig, AutoCountToken
from connectors.autocount.ac_client import (
    AutoCountApiClient,
    AutoCountApiConfig,
    AutoCountApiError,
    AutoCountAuthenticationError,
    AutoCountConflictError,
    AutoCountNotFoundError,
    AutoCountTimeoutError,
)
from connectors.autocount.ac_models import (
    ACItem,
    ACSupplier,
    ACPurchaseOrder,
    ACPurchaseOrderLine,
    ACStockAdjustment,
)
from connectors.autocount.ac_mapping import (
    ITEM_MAPPER,
    SUPPLIER_MAPPER,
    PURCHASE_ORDER_MAPPER,
    get_mapper,
)

__all__ = [
    # Connector
    "AutoCountConnector",
    # Auth
    "AutoCountAuthProvider",
    "AutoCountAuthConfig",
    "AutoCountToken",
    # HTTP client
    "AutoCountApiClient",
    "AutoCountApiConfig",
    "AutoCountApiError",
    "AutoCountAuthenticationError",
    "AutoCountConflictError",
    "AutoCountNotFoundError",
    "AutoCountTimeoutError",
    # Models
    "ACItem",
    "ACSupplier",
    "ACPurchaseOrder",
    "ACPurchaseOrderLine",
    "ACStockAdjustment",
    # Field tables
    "ITEM_MAPPER",
    "SUPPLIER_MAPPER",
    "PURCHASE_ORDER_MAPPER",
    "get_mapper",
]
