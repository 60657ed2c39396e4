"""AutoCount ERP Connector.

Implements the ERPConnector interface for the AutoCount API gateway.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from connectors.erp_base import (
    ERPConnector,
    ERPConfig,
    ERPConnectionStatus,
    RemoteWriteResult,
    register_connector,
)
from connectors.autocount.ac_auth import AutoCountAuthProvider, AutoCountAuthConfig
from connectors.autocount.ac_client import (
    AutoCountApiClient,
    AutoCountApiConfig,
    AutoCountApiError,
    AutoCountAuthenticationError,
    RetryConfig,
)
from core.models.records import EntityType

logger = logging.getLogger(__name__)

ENTITY_PATHS: Dict[EntityType, str] = {
    EntityType.ITEM: "items",
    EntityType.SUPPLIER: "suppliers",
    EntityType.PURCHASE_ORDER: "purchase-orders",
}

STOCK_ADJUSTMENT_PATH = "stock-adjustments"
TEST_CONNECTION_PATH = "test-connection"

# Keys the gateway uses for the created document's number, in lookup order
REMOTE_ID_KEYS = ("docNo", "DocNo", "code", "Code", "itemCode", "ItemCode")

# Envelope keys wrapping list responses on some gateway versions
LIST_ENVELOPE_KEYS = ("data", "value", "items", "Data")


def extract_remote_id(body: Any) -> Optional[str]:
    """Find the document number / code in a write response."""
    if not isinstance(body, dict):
        return None
    for key in REMOTE_ID_KEYS:
        value = body.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def unwrap_list(body: Any, path: str) -> List[Dict[str, Any]]:
    """Accept a bare JSON array or an enveloped one."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in LIST_ENVELOPE_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
    raise AutoCountApiError(f"Unexpected response shape from GET {path}: {type(body).__name__}")


@register_connector("autocount")
class AutoCountConnector(ERPConnector):
    """AutoCount connector implementation.

    Required configuration:
    - base_url: AutoCount API gateway URL
    - username / password: API credentials

    Optional configuration:
    - timeout_seconds: Per-request timeout (default 30)
    - max_retries: Retries for GET/PUT (default 2)
    - custom_settings.location: Stock location for adjustments (default "MAIN")
    """

    def __init__(self, config: ERPConfig):
        super().__init__(config)

        auth_config = AutoCountAuthConfig(
            base_url=config.base_url.rstrip("/"),
            username=config.username,
            password=config.password,
            timeout_seconds=config.timeout_seconds,
        )
        self._auth_provider = AutoCountAuthProvider(auth_config)

        api_config = AutoCountApiConfig(
            base_url=config.base_url,
            retry_config=RetryConfig(max_retries=config.max_retries),
            timeout_seconds=config.timeout_seconds,
        )
        self._api_client = AutoCountApiClient(self._auth_provider, api_config)

    @property
    def location(self) -> str:
        return self.config.custom_settings.get("location", "MAIN")

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """Open a session and log in to AutoCount."""
        self._connection_status = ERPConnectionStatus.AUTHENTICATING
        try:
            await self._api_client.connect()
        except AutoCountAuthenticationError:
            self._connection_status = ERPConnectionStatus.FAILED
            raise
        self._connection_status = ERPConnectionStatus.CONNECTED
        logger.info(f"Connected to AutoCount at {self.config.base_url}")

    async def disconnect(self) -> None:
        """Disconnect from AutoCount."""
        await self._api_client.disconnect()
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    async def test_connection(self) -> bool:
        """Test if the gateway answers with the current credential."""
        try:
            await self._api_client.get(TEST_CONNECTION_PATH)
            return True
        except AutoCountApiError as e:
            logger.warning(f"AutoCount connection test failed: {e}")
            return False

    # =========================================================================
    # Records
    # =========================================================================

    async def list_records(self, entity: EntityType) -> List[Dict[str, Any]]:
        path = ENTITY_PATHS[entity]
        body = await self._api_client.get(path)
        records = unwrap_list(body, path)
        logger.info(f"Fetched {len(records)} {path} from AutoCount")
        return records

    async def create_record(self, entity: EntityType, payload: Dict[str, Any]) -> RemoteWriteResult:
        body = await self._api_client.post(ENTITY_PATHS[entity], payload)
        return RemoteWriteResult(
            remote_id=extract_remote_id(body),
            status="created",
            raw=body if isinstance(body, dict) else {},
        )

    async def update_record(
        self,
        entity: EntityType,
        key: str,
        payload: Dict[str, Any],
    ) -> RemoteWriteResult:
        path = f"{ENTITY_PATHS[entity]}/{quote(key, safe='')}"
        body = await self._api_client.put(path, payload)
        return RemoteWriteResult(
            remote_id=extract_remote_id(body) or key,
            status="updated",
            raw=body if isinstance(body, dict) else {},
        )

    async def post_stock_adjustment(self, payload: Dict[str, Any]) -> RemoteWriteResult:
        body = await self._api_client.post(STOCK_ADJUSTMENT_PATH, payload)
        return RemoteWriteResult(
            remote_id=extract_remote_id(body),
            status="posted",
            raw=body if isinstance(body, dict) else {},
        )
