"""Sync engine configuration.

Settings are read once from the environment (and an optional ``.env`` file at
the repo root) and passed explicitly into connectors and the orchestrator.
Nothing inside the engine reads environment variables on its own.

Environment variables:
- AUTOCOUNT_API_URL: Base URL of the AutoCount API gateway
- AUTOCOUNT_USERNAME / AUTOCOUNT_PASSWORD: Login credentials
- AUTOCOUNT_TIMEOUT_SECONDS: Per-request timeout (default 30)
- AUTOCOUNT_MAX_RETRIES: Retries for idempotent requests (default 2)
- SYNC_MAX_CONCURRENCY: Parallel per-record operations per run (default 5)
- SYNC_DB_PATH: SQLite database for the local store and sync log
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parents[1] / ".env"
if env_path.exists():
    load_dotenv(env_path)


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "autocount_sync.db"


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class SyncSettings:
    """Connection and runtime settings for one sync deployment."""
    api_url: str
    username: str
    password: str
    timeout_seconds: int = 30
    max_retries: int = 2
    max_concurrency: int = 5
    db_path: Path = DEFAULT_DB_PATH
    location: str = "MAIN"

    @classmethod
    def from_env(cls, db_path: Optional[Path] = None) -> "SyncSettings":
        """Build settings from environment variables.

        Raises:
            ValueError: If the AutoCount URL or credentials are missing
        """
        api_url = os.getenv("AUTOCOUNT_API_URL", "").strip()
        username = os.getenv("AUTOCOUNT_USERNAME", "").strip()
        password = os.getenv("AUTOCOUNT_PASSWORD", "")

        missing = [
            name for name, value in (
                ("AUTOCOUNT_API_URL", api_url),
                ("AUTOCOUNT_USERNAME", username),
                ("AUTOCOUNT_PASSWORD", password),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"AutoCount configuration is incomplete. Set {', '.join(missing)} "
                "in the environment or in .env"
            )

        env_db = os.getenv("SYNC_DB_PATH")
        return cls(
            api_url=api_url.rstrip("/"),
            username=username,
            password=password,
            timeout_seconds=_int_env("AUTOCOUNT_TIMEOUT_SECONDS", 30),
            max_retries=_int_env("AUTOCOUNT_MAX_RETRIES", 2),
            max_concurrency=max(1, _int_env("SYNC_MAX_CONCURRENCY", 5)),
            db_path=db_path or (Path(env_db) if env_db else DEFAULT_DB_PATH),
            location=os.getenv("AUTOCOUNT_LOCATION", "MAIN"),
        )
