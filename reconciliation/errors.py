"""Sync error taxonomy.

Run-level errors (AuthenticationFailure, FetchFailure) abort a run and are
recorded as one failed sync log entry. Per-record errors (MappingFailure,
RemoteOperationFailure, PersistenceFailure) are collected into the run result
and never propagate past the per-record boundary. Retry-level errors are
raised by the retry dispatcher before any remote call is made; an entry that
is already successful is not an error, the dispatcher reports "nothing to
retry".
"""

from typing import Any, Dict, Optional

from connectors.erp_base import (
    ERPError,
    ERPAuthenticationError,
    ERPConflictError,
    ERPNotFoundError,
)


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


# -----------------------------------------------------------------------------
# Run-level
# -----------------------------------------------------------------------------

class AuthenticationFailure(SyncError):
    """Login to AutoCount failed. Fatal to the run, never auto-retried."""


class FetchFailure(SyncError):
    """Remote or local record set could not be read. Fatal to the run."""


# -----------------------------------------------------------------------------
# Per-record
# -----------------------------------------------------------------------------

class MappingFailure(SyncError):
    """A record could not be translated between local and remote shapes."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class RemoteOperationFailure(SyncError):
    """AutoCount rejected a create/update for one record."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class RemoteNotFoundError(RemoteOperationFailure):
    """Update target does not exist in AutoCount."""


class RemoteAlreadyExistsError(RemoteOperationFailure):
    """Create target already exists in AutoCount."""


class PersistenceFailure(SyncError):
    """Local write failed, possibly after a successful remote call.

    ``payload`` holds the remote record so the mismatch can be reconciled by
    hand.
    """

    def __init__(self, key: str, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(f"{key}: {message}")
        self.key = key
        self.payload = payload or {}


# -----------------------------------------------------------------------------
# Retry-level
# -----------------------------------------------------------------------------

class UnknownSyncTypeError(SyncError):
    """Sync log entry names a sync type with no retry handler."""


class SyncLogNotFound(SyncError):
    """No sync log entry matches the given id or reference."""


class ReferenceNotFound(SyncError):
    """The local record a sync log entry points at no longer exists."""


def translate_remote_error(error: ERPError, entity_label: str, key: str) -> RemoteOperationFailure:
    """Turn a connector error for one record into a per-record failure.

    Not-found and already-exists get user-actionable messages; everything
    else keeps the connector's message.
    """
    if isinstance(error, ERPNotFoundError):
        return RemoteNotFoundError(
            f"{entity_label} {key} not found in AutoCount", error.status_code
        )
    if isinstance(error, ERPConflictError):
        return RemoteAlreadyExistsError(
            f"{entity_label} {key} already exists in AutoCount", error.status_code
        )
    if isinstance(error, ERPAuthenticationError):
        return RemoteOperationFailure(
            f"{entity_label} {key}: AutoCount rejected credentials ({error})",
            error.status_code,
        )
    return RemoteOperationFailure(f"{entity_label} {key}: {error}", error.status_code)
