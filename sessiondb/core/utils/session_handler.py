"""
Framework-facing session handler.

Web frameworks usually drive session persistence through four calls:
``read`` at the start of a request, ``write`` at the end, plus ``destroy``
and ``gc``. ``SessionHandler`` maps that contract onto ``SessionStore``:
``read`` opens a locked lease and parks it until the matching ``write``.

Leases are parked per thread, so ``read`` and its ``write`` must run on the
same thread. One handler may be shared by worker threads; a second thread
reading a session that another thread holds waits for that thread's write.
Call ``close()`` when the handler is done so that no lease outlives it.
"""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from sessiondb.core.logging_config import mask_session_id
from sessiondb.core.utils.session_store import SessionLease, SessionStore, WriteContext

logger = logging.getLogger(__name__)

ContextProvider = Callable[[], WriteContext]

LeaseKey = Tuple[int, str]


class SessionHandler:
    """read/write/destroy/gc adapter around a SessionStore"""

    def __init__(self, store: SessionStore, context_provider: Optional[ContextProvider] = None):
        self.store = store
        self._context_provider = context_provider or WriteContext
        self._leases: Dict[LeaseKey, SessionLease] = {}
        self._leases_lock = threading.Lock()

    @staticmethod
    def _key(session_id: str) -> LeaseKey:
        return threading.get_ident(), session_id

    def _take(self, session_id: str) -> Optional[SessionLease]:
        with self._leases_lock:
            return self._leases.pop(self._key(session_id), None)

    def read(self, session_id: str) -> str:
        """Lock the session and return its payload ('' for a new session)."""
        previous = self._take(session_id)
        if previous is not None:
            # same thread read twice without a write in between
            logger.warning(
                "Session read again before write; releasing earlier lock",
                extra={"session": mask_session_id(session_id)},
            )
            previous.release()

        lease = self.store.open(session_id)
        with self._leases_lock:
            self._leases[self._key(session_id)] = lease
        return lease.data

    def write(self, session_id: str, data: str) -> bool:
        """Store the payload and release the lock this thread took in ``read``."""
        context = self._context_provider()
        lease = self._take(session_id)
        if lease is None:
            return self.store.write(session_id, data, context)
        return lease.write(data, context)

    def destroy(self, session_id: str) -> bool:
        """Release this thread's parked lock for the id and delete the server-side row."""
        lease = self._take(session_id)
        try:
            return self.store.destroy(session_id)
        finally:
            if lease is not None:
                lease.release()

    def gc(self, max_lifetime: int) -> int:
        return self.store.garbage_collect(max_lifetime)

    def close(self) -> None:
        """Release every lease still parked on this handler, from any thread."""
        with self._leases_lock:
            leases = list(self._leases.values())
            self._leases.clear()
        for lease in leases:
            lease.release()

    def __enter__(self) -> "SessionHandler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
