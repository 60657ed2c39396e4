"""Settings and runtime wiring tests."""

import pytest

from connectors.autocount import AutoCountConnector
from core.audit.sync_log import SQLiteSyncLogBackend
from core.config import SyncSettings
from reconciliation.runtime import build_runtime
from storage import SQLiteLocalStore


@pytest.fixture
def autocount_env(monkeypatch, tmp_path):
    monkeypatch.setenv("AUTOCOUNT_API_URL", "http://ac.local/api/")
    monkeypatch.setenv("AUTOCOUNT_USERNAME", "api")
    monkeypatch.setenv("AUTOCOUNT_PASSWORD", "secret")
    monkeypatch.setenv("SYNC_DB_PATH", str(tmp_path / "sync.db"))
    for name in ("AUTOCOUNT_TIMEOUT_SECONDS", "AUTOCOUNT_MAX_RETRIES", "SYNC_MAX_CONCURRENCY", "AUTOCOUNT_LOCATION"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_from_env_defaults(autocount_env):
    settings = SyncSettings.from_env()

    assert settings.api_url == "http://ac.local/api"
    assert settings.timeout_seconds == 30
    assert settings.max_retries == 2
    assert settings.max_concurrency == 5
    assert settings.location == "MAIN"
    assert settings.db_path == autocount_env / "sync.db"


def test_from_env_overrides(autocount_env, monkeypatch):
    monkeypatch.setenv("AUTOCOUNT_TIMEOUT_SECONDS", "10")
    monkeypatch.setenv("SYNC_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("AUTOCOUNT_LOCATION", "WH2")

    settings = SyncSettings.from_env()

    assert settings.timeout_seconds == 10
    assert settings.max_concurrency == 1
    assert settings.location == "WH2"


def test_missing_credentials(autocount_env, monkeypatch):
    monkeypatch.delenv("AUTOCOUNT_PASSWORD")

    with pytest.raises(ValueError, match="AUTOCOUNT_PASSWORD"):
        SyncSettings.from_env()


def test_bad_integer(autocount_env, monkeypatch):
    monkeypatch.setenv("AUTOCOUNT_MAX_RETRIES", "many")

    with pytest.raises(ValueError, match="AUTOCOUNT_MAX_RETRIES"):
        SyncSettings.from_env()


def test_build_runtime(autocount_env):
    runtime = build_runtime(SyncSettings.from_env())

    assert isinstance(runtime.store, SQLiteLocalStore)
    assert isinstance(runtime.sync_log, SQLiteSyncLogBackend)

    first = runtime.orchestrator.connector_factory()
    second = runtime.orchestrator.connector_factory()
    assert isinstance(first, AutoCountConnector)
    assert first is not second
    assert first.config.base_url == "http://ac.local/api"
    assert first.config.custom_settings == {"location": "MAIN"}
