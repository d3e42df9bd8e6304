"""
Test helper functions for common testing operations

These helpers provide utilities for session id generation, waiting on
background threads and checking that logs stay free of sensitive data.
"""

import secrets
import threading
import time
from typing import Callable, Dict

from sqlalchemy import event, func, select
from sqlalchemy.engine import Engine

from sessiondb.db.models.session_lock import SessionLock
from sessiondb.db.models.session_record import SessionRecord


def make_session_id() -> str:
    """Random 32 character session identifier"""
    return secrets.token_hex(16)


def wait_for_condition(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Wait for a condition to become true with timeout"""
    start_time = time.time()
    while time.time() - start_time < timeout:
        if condition():
            return True
        time.sleep(interval)
    return False


def count_rows(engine: Engine, session_id: str) -> int:
    """Number of session rows stored for an id"""
    with engine.connect() as conn:
        return conn.execute(
            select(func.count()).select_from(SessionRecord).where(SessionRecord.id == session_id)
        ).scalar_one()


def lock_rows(engine: Engine) -> int:
    """Number of rows currently in the lock table"""
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(SessionLock)).scalar_one()


def assert_no_sensitive_data_in_logs(caplog, sensitive_patterns: list[str]):
    """Assert that sensitive data patterns don't appear in logs"""
    all_logs = " ".join([record.getMessage() for record in caplog.records])

    for pattern in sensitive_patterns:
        assert pattern not in all_logs, f"Sensitive pattern '{pattern}' found in logs"


class EmulatedNamedLocks:
    """
    MySQL GET_LOCK/RELEASE_LOCK for SQLite connections.

    Each DBAPI connection owns the locks it takes, and GET_LOCK blocks for
    up to its timeout like the server function does.
    """

    def __init__(self):
        self._owners: Dict[str, object] = {}
        self._changed = threading.Condition()

    def install(self, engine: Engine) -> None:
        @event.listens_for(engine, "connect")
        def _register(dbapi_connection, _record):
            owner = object()
            dbapi_connection.create_function(
                "GET_LOCK", 2, lambda name, timeout: self._get_lock(name, timeout, owner)
            )
            dbapi_connection.create_function(
                "RELEASE_LOCK", 1, lambda name: self._release_lock(name, owner)
            )

    def _get_lock(self, name: str, timeout: float, owner: object) -> int:
        deadline = time.monotonic() + timeout
        with self._changed:
            while self._owners.get(name, owner) is not owner:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return 0
                self._changed.wait(remaining)
            self._owners[name] = owner
            return 1

    def _release_lock(self, name: str, owner: object) -> int:
        with self._changed:
            if self._owners.get(name) is not owner:
                return 0
            del self._owners[name]
            self._changed.notify_all()
            return 1

    def held(self) -> int:
        with self._changed:
            return len(self._owners)
