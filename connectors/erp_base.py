"""Abstract ERP Connector Interface.

This module defines the abstract interface that all ERP connectors must implement.
It is intentionally ERP-agnostic - no AutoCount URL paths or payload shapes here.

Connectors implement this interface to:
1. Connect and authenticate with their ERP (one login per sync run)
2. List remote records for an entity class
3. Create and update remote records by natural key
4. Post stock adjustments for ledger movements

Key Design Principles:
- The sync orchestrator and retry dispatcher depend ONLY on this interface
- Records cross the interface as plain dicts in the ERP's own field names;
  translation to the local shape is the entity mapper's job
- ERP-specific implementations live in connector subfolders
- Connectors raise the ERPError family; the sync engine translates those
  into its own taxonomy (reconciliation.errors)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.models.records import EntityType


# =============================================================================
# Enums
# =============================================================================

class ERPConnectionStatus(str, Enum):
    """Connection status to ERP system."""
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    AUTHENTICATING = "AUTHENTICATING"
    FAILED = "FAILED"


# =============================================================================
# Errors
# =============================================================================

class ERPError(Exception):
    """Base exception for ERP API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ERPAuthenticationError(ERPError):
    """Login failed, host unreachable during login, or 401/403."""
    pass


class ERPNotFoundError(ERPError):
    """Resource not found (404)."""
    pass


class ERPConflictError(ERPError):
    """Resource already exists (409, or a body saying so)."""
    pass


class ERPTimeoutError(ERPError):
    """Request exceeded its timeout."""
    pass


# =============================================================================
# Results
# =============================================================================

class RemoteWriteResult(BaseModel):
    """Outcome of one remote create/update/post.

    ``remote_id`` is the ERP's document number or code when the ERP returns
    one.
    """
    remote_id: Optional[str] = Field(default=None, description="ERP doc no / code")
    status: str = Field(default="ok")
    raw: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class ERPConfig:
    """Configuration for an ERP connector.

    Built from SyncSettings for each run; connectors never read the
    environment themselves.
    """
    connector_type: str                     # "autocount"
    base_url: str = ""                      # ERP API gateway
    username: str = ""
    password: str = ""

    # Behavior
    timeout_seconds: int = 30
    max_retries: int = 2                    # idempotent requests only

    # ERP-specific settings
    custom_settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings, connector_type: str = "autocount") -> "ERPConfig":
        """Build connector config from SyncSettings."""
        return cls(
            connector_type=connector_type,
            base_url=settings.api_url,
            username=settings.username,
            password=settings.password,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            custom_settings={"location": settings.location},
        )


# =============================================================================
# Abstract Connector Interface
# =============================================================================

class ERPConnector(ABC):
    """Abstract base class for ERP connectors.

    A connector instance lives for one sync run: ``connect()`` logs in once,
    every call in the run reuses that credential, and ``disconnect()`` drops
    it. Use as an async context manager:

        async with create_connector(config) as erp:
            items = await erp.list_records(EntityType.ITEM)

    Implementations:
    - connectors/autocount/ac_connector.py
    """

    def __init__(self, config: ERPConfig):
        """Initialize connector with configuration."""
        self.config = config
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    async def __aenter__(self) -> "ERPConnector":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # =========================================================================
    # Connection Management
    # =========================================================================

    @abstractmethod
    async def connect(self) -> None:
        """Open the HTTP session and authenticate.

        Raises:
            ERPAuthenticationError: Bad credentials, unreachable host, or a
                non-2xx login response
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the HTTP session and forget the credential."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check the ERP is reachable and the credential is accepted."""
        pass

    @property
    def connection_status(self) -> ERPConnectionStatus:
        """Get current connection status."""
        return self._connection_status

    # =========================================================================
    # Records
    # =========================================================================

    @abstractmethod
    async def list_records(self, entity: EntityType) -> List[Dict[str, Any]]:
        """List every remote record of an entity class, in ERP order."""
        pass

    @abstractmethod
    async def create_record(self, entity: EntityType, payload: Dict[str, Any]) -> RemoteWriteResult:
        """Create one remote record.

        Raises:
            ERPConflictError: Record with this natural key already exists
            ERPError: Any other rejection
        """
        pass

    @abstractmethod
    async def update_record(
        self,
        entity: EntityType,
        key: str,
        payload: Dict[str, Any],
    ) -> RemoteWriteResult:
        """Update one remote record by natural key.

        Raises:
            ERPNotFoundError: No remote record with this key
            ERPError: Any other rejection
        """
        pass

    @abstractmethod
    async def post_stock_adjustment(self, payload: Dict[str, Any]) -> RemoteWriteResult:
        """Post one stock adjustment document."""
        pass

    # -------------------------------------------------------------------------
    # Utilities
    # -------------------------------------------------------------------------

    def get_connector_name(self) -> str:
        """Get the name of this connector."""
        return self.config.connector_type


# =============================================================================
# Connector Factory
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(config: ERPConfig) -> ERPConnector:
    """Create a connector instance from configuration.

    Args:
        config: ERPConfig with connector_type specified

    Returns:
        Configured connector instance

    Raises:
        ValueError: If connector_type is not registered
    """
    connector_type = config.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ValueError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    connector_class = _connector_registry[connector_type]
    return connector_class(config)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())
