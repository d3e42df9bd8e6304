"""Named advisory locks used to serialize work on a single session id.

The locks are cooperative: they only exclude callers that take the same
lock by name. Three backends are provided:

- MySQL/MariaDB ``GET_LOCK``/``RELEASE_LOCK``, held on a dedicated connection.
- PostgreSQL session-level advisory locks, held on a dedicated connection.
- A ``session_locks`` table for databases without a native primitive
  (SQLite and anything else), using a primary-key conditional insert.

Backends that poll back off exponentially between attempts.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine, delete, insert, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import NullPool

from sessiondb.core.config import Settings
from sessiondb.core.logging_config import mask_session_id
from sessiondb.core.utils.clock import utcnow
from sessiondb.db.models.session_lock import SessionLock

logger = logging.getLogger(__name__)

INITIAL_BACKOFF_SECONDS = 0.01
MAX_BACKOFF_SECONDS = 0.5

T = TypeVar("T")


def _loggable(name: str) -> str:
    prefix, _, ident = name.partition(":")
    return f"{prefix}:{mask_session_id(ident)}"


@dataclass
class LockHandle:
    """Proof of a held lock; pass it back to the backend that issued it."""

    name: str
    token: str
    connection: Optional[Connection] = None
    key: Optional[int] = None


def poll_with_backoff(
    attempt: Callable[[], Optional[T]],
    timeout: float,
    initial_delay: float = INITIAL_BACKOFF_SECONDS,
    max_delay: float = MAX_BACKOFF_SECONDS,
) -> Optional[T]:
    """Call ``attempt`` until it returns something other than None or time runs out."""
    deadline = time.monotonic() + timeout
    delay = initial_delay
    while True:
        result = attempt()
        if result is not None:
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        time.sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)


class AdvisoryLockBackend:
    """Interface shared by all lock backends"""

    name = "abstract"

    def __init__(self, engine: Engine):
        self.engine = engine

    def acquire(self, name: str, timeout: float) -> Optional[LockHandle]:
        """Block up to ``timeout`` seconds; return a handle, or None on timeout."""
        raise NotImplementedError

    def release(self, handle: LockHandle) -> None:
        raise NotImplementedError

    def purge_expired(self) -> int:
        """Drop abandoned locks. Only meaningful for the table backend."""
        return 0


class MySQLAdvisoryLock(AdvisoryLockBackend):
    """GET_LOCK based locks. The server releases them if the connection dies."""

    name = "mysql"

    def acquire(self, name: str, timeout: float) -> Optional[LockHandle]:
        conn = self.engine.connect()
        try:
            # GET_LOCK only takes whole seconds
            acquired = conn.execute(
                text("SELECT GET_LOCK(:name, :timeout)"),
                {"name": name, "timeout": max(1, math.ceil(timeout))},
            ).scalar()
            conn.commit()
        except Exception:
            conn.close()
            raise
        if acquired != 1:
            conn.close()
            return None
        return LockHandle(name=name, token=uuid.uuid4().hex, connection=conn)

    def release(self, handle: LockHandle) -> None:
        conn = handle.connection
        if conn is None:
            return
        try:
            released = conn.execute(
                text("SELECT RELEASE_LOCK(:name)"), {"name": handle.name}
            ).scalar()
            conn.commit()
            if released != 1:
                logger.warning("Advisory lock was not held at release time", extra={"lock": _loggable(handle.name)})
        finally:
            conn.close()
            handle.connection = None


class PostgresAdvisoryLock(AdvisoryLockBackend):
    """Session-level pg advisory locks, polled with pg_try_advisory_lock."""

    name = "postgresql"

    @staticmethod
    def lock_key(name: str) -> int:
        """Map a lock name onto the signed 64-bit key space of pg advisory locks"""
        digest = hashlib.sha1(name.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big", signed=True)

    def acquire(self, name: str, timeout: float) -> Optional[LockHandle]:
        key = self.lock_key(name)
        conn = self.engine.connect()

        def attempt() -> Optional[bool]:
            got = conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {"key": key}
            ).scalar()
            conn.commit()
            return True if got else None

        try:
            acquired = poll_with_backoff(attempt, timeout)
        except Exception:
            conn.close()
            raise
        if not acquired:
            conn.close()
            return None
        return LockHandle(name=name, token=uuid.uuid4().hex, connection=conn, key=key)

    def release(self, handle: LockHandle) -> None:
        conn = handle.connection
        if conn is None:
            return
        try:
            released = conn.execute(
                text("SELECT pg_advisory_unlock(:key)"), {"key": handle.key}
            ).scalar()
            conn.commit()
            if not released:
                logger.warning("Advisory lock was not held at release time", extra={"lock": _loggable(handle.name)})
        finally:
            conn.close()
            handle.connection = None


class TableAdvisoryLock(AdvisoryLockBackend):
    """Lock rows in ``session_locks``; the primary key makes the insert conditional."""

    name = "table"

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(engine)
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def _try_insert(self, name: str, token: str) -> Optional[LockHandle]:
        now = self._clock()
        # A holder that crashed never deletes its row; expired rows are fair game
        with self.engine.begin() as conn:
            conn.execute(
                delete(SessionLock).where(
                    SessionLock.name == name, SessionLock.expires_at < now
                )
            )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(SessionLock).values(
                        name=name, owner=token, expires_at=now + self.ttl
                    )
                )
        except IntegrityError:
            return None
        return LockHandle(name=name, token=token)

    def acquire(self, name: str, timeout: float) -> Optional[LockHandle]:
        token = uuid.uuid4().hex
        return poll_with_backoff(lambda: self._try_insert(name, token), timeout)

    def release(self, handle: LockHandle) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(SessionLock).where(
                    SessionLock.name == handle.name, SessionLock.owner == handle.token
                )
            )
        if result.rowcount == 0:
            logger.warning(
                "Lock row expired before release; another request may have taken it",
                extra={"lock": _loggable(handle.name)},
            )

    def purge_expired(self) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(SessionLock).where(SessionLock.expires_at < self._clock())
            )
        return result.rowcount or 0


def dedicated_lock_engine(engine: Engine) -> Engine:
    """
    Unpooled engine for native lock connections.

    A native lock lives on its connection for the whole request, and the
    lease reads and writes the session row on that same connection. None of
    these connections come from the shared pool.
    """
    return create_engine(engine.url, poolclass=NullPool, hide_parameters=True)


def lock_backend_name(engine: Engine, settings: Settings) -> str:
    """Configured backend, or the one matching the engine's dialect for ``auto``"""
    choice = settings.SESSION_LOCK_BACKEND
    if choice != "auto":
        return choice
    dialect = engine.dialect.name
    if dialect in ("mysql", "mariadb"):
        return "mysql"
    if dialect == "postgresql":
        return "postgresql"
    return "table"


def get_lock_backend(
    engine: Engine,
    settings: Settings,
    clock: Callable[[], datetime] = utcnow,
) -> AdvisoryLockBackend:
    """Build the lock backend chosen by ``lock_backend_name``"""
    choice = lock_backend_name(engine, settings)
    if choice == "mysql":
        backend: AdvisoryLockBackend = MySQLAdvisoryLock(dedicated_lock_engine(engine))
    elif choice == "postgresql":
        backend = PostgresAdvisoryLock(dedicated_lock_engine(engine))
    else:
        backend = TableAdvisoryLock(engine, ttl_seconds=settings.SESSION_LOCK_TTL_SECONDS, clock=clock)

    logger.debug("Using %s advisory lock backend", backend.name)
    return backend
