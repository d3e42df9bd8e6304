"""Database-backed web session store with per-session advisory locking."""

from sessiondb.core.exceptions import (
    LockTimeoutError,
    MalformedPayloadError,
    SessionStoreError,
    StorageUnavailableError,
)
from sessiondb.core.utils.session_handler import SessionHandler
from sessiondb.core.utils.session_store import SessionLease, SessionStore, WriteContext

__version__ = "1.0.0"

__all__ = [
    "LockTimeoutError",
    "MalformedPayloadError",
    "SessionHandler",
    "SessionLease",
    "SessionStore",
    "SessionStoreError",
    "StorageUnavailableError",
    "WriteContext",
]
