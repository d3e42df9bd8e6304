"""Database models"""

from sessiondb.db.models.session_lock import SessionLock
from sessiondb.db.models.session_record import SessionRecord

__all__ = [
    "SessionLock",
    "SessionRecord",
]
