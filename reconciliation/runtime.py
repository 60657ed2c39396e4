"""Process-wide wiring of the sync engine.

Builds the store, sync log, connector factory, orchestrator, retry
dispatcher and valuation engine from one SyncSettings. Activities and API
routes share the runtime through get_runtime(); tests install their own
with set_runtime().
"""

from dataclasses import dataclass
from typing import Optional

from connectors import ERPConfig, create_connector
from core.audit.sync_log import SQLiteSyncLogBackend, SyncLogBackend
from core.config import SyncSettings
from reconciliation.orchestrator import ConnectorFactory, SyncOrchestrator
from reconciliation.retry import RetryDispatcher
from reconciliation.valuation import ValuationEngine
from storage.local_store import LocalStore
from storage.sqlite_store import SQLiteLocalStore


@dataclass
class SyncRuntime:
    """Everything one process needs to run syncs."""
    store: LocalStore
    sync_log: SyncLogBackend
    orchestrator: SyncOrchestrator
    dispatcher: RetryDispatcher
    valuation: ValuationEngine


def connector_factory_for(settings: SyncSettings) -> ConnectorFactory:
    """Factory building a fresh AutoCount connector for every run."""
    config = ERPConfig.from_settings(settings)
    return lambda: create_connector(config)


def assemble_runtime(
    connector_factory: ConnectorFactory,
    store: LocalStore,
    sync_log: SyncLogBackend,
    max_concurrency: int = 5,
) -> SyncRuntime:
    orchestrator = SyncOrchestrator(connector_factory, store, sync_log, max_concurrency=max_concurrency)
    return SyncRuntime(
        store=store,
        sync_log=sync_log,
        orchestrator=orchestrator,
        dispatcher=RetryDispatcher(orchestrator),
        valuation=ValuationEngine(store),
    )


def build_runtime(settings: SyncSettings) -> SyncRuntime:
    """Runtime on the SQLite database named in the settings."""
    return assemble_runtime(
        connector_factory_for(settings),
        SQLiteLocalStore(settings.db_path),
        SQLiteSyncLogBackend(settings.db_path),
        max_concurrency=settings.max_concurrency,
    )


_runtime: Optional[SyncRuntime] = None


def get_runtime() -> SyncRuntime:
    """Shared runtime, built from the environment on first use."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(SyncSettings.from_env())
    return _runtime


def set_runtime(runtime: Optional[SyncRuntime]) -> None:
    global _runtime
    _runtime = runtime
