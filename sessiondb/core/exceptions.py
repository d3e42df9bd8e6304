"""Session store error types.

A missing session is not an error: reads return an empty payload and the
administrative lookup returns ``None``.
"""

from typing import Optional


class SessionStoreError(Exception):
    """Base class for all session store failures"""
    pass


class StorageUnavailableError(SessionStoreError):
    """Raised when the session table cannot be reached or queried"""

    def __init__(self, operation: str, original: Optional[BaseException] = None):
        self.operation = operation
        self.original = original
        detail = f": {original}" if original is not None else ""
        super().__init__(f"Session storage unavailable during {operation}{detail}")


class LockTimeoutError(SessionStoreError):
    """Raised when the per-session advisory lock is not obtained in time"""

    def __init__(self, session_id: str, waited: float):
        self.session_id = session_id
        self.waited = waited
        # Only a prefix of the identifier goes into the message; it may end up in logs
        super().__init__(
            f"Could not lock session {session_id[:6]}**** within {waited:g} seconds"
        )


class MalformedPayloadError(SessionStoreError):
    """Raised when a stored payload cannot be decoded for inspection"""
    pass
