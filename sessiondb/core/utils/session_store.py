"""Server-side web session storage on a relational database.

One row per session in the ``sessions`` table, keyed by the caller's 32
character session id. Payloads are opaque strings; the store never parses
them except for administrative inspection through ``get_session_data``.

Concurrent requests for the same session are serialized with a named
advisory lock. ``open()`` takes the lock and reads the payload, returning a
``SessionLease``; ``SessionLease.write()`` upserts the new payload and
releases the lock on every exit path. Destroy, garbage collection and the
reporting queries never take the lock.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Generator, List, Optional
import logging
import time

from sqlalchemy import case, delete, func, insert, select, update
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sessiondb.core.codecs import SessionCodec, get_codec
from sessiondb.core.config import Settings, settings as default_settings
from sessiondb.core.exceptions import LockTimeoutError, StorageUnavailableError
from sessiondb.core.logging_config import mask_session_id
from sessiondb.core.schemas.session import SessionDetail, SessionSummary
from sessiondb.core.utils.clock import utcnow
from sessiondb.core.utils.request_meta import clean_user_agent, decode_ip, encode_ip
from sessiondb.db.base import Base
from sessiondb.db.locks import AdvisoryLockBackend, LockHandle, get_lock_backend
from sessiondb.db.models.session_lock import SessionLock
from sessiondb.db.models.session_record import SessionRecord

logger = logging.getLogger(__name__)

_MUTABLE_COLUMNS = ("user_id", "resource_id", "data", "ip", "ua")


def _unsigned(value: Optional[int]) -> int:
    """User and resource ids are unsigned; negative or missing values store as 0"""
    value = int(value or 0)
    return value if value > 0 else 0


@dataclass(frozen=True)
class WriteContext:
    """Request facts recorded with a write; supplied by the caller on every call."""

    user_id: int = 0
    resource_id: int = 0
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None


class SessionLease:
    """
    A session read under its advisory lock.

    Obtain one from ``SessionStore.open()``. Exactly one of ``write()`` or
    ``release()`` ends the lease; leaving a ``with`` block releases it too.
    """

    def __init__(
        self,
        store: "SessionStore",
        session_id: str,
        data: str,
        handle: Optional[LockHandle],
    ):
        self._store = store
        self.session_id = session_id
        self.data = data
        self._handle = handle
        self._closed = False

    @property
    def locked(self) -> bool:
        """True while this lease holds the session's advisory lock"""
        return self._handle is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: str, context: Optional[WriteContext] = None) -> bool:
        """Upsert ``data`` and release the lock, even when the upsert fails."""
        if self._closed:
            raise RuntimeError("Session lease already written or released")
        try:
            connection = self._handle.connection if self._handle is not None else None
            return self._store.write(self.session_id, data, context, connection=connection)
        finally:
            self.release()

    def release(self) -> None:
        """Give up the lock without writing. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        handle, self._handle = self._handle, None
        if handle is not None:
            self._store._release_lock(handle)

    def __enter__(self) -> "SessionLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<SessionLease(session={mask_session_id(self.session_id)}, "
            f"locked={self.locked}, closed={self._closed})>"
        )


class SessionStore:
    """Database-backed session storage with per-session advisory locking."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        settings: Optional[Settings] = None,
        lock_backend: Optional[AdvisoryLockBackend] = None,
        codec: Optional[SessionCodec] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if engine is None:
            from sessiondb.db.session import engine as default_engine
            engine = default_engine
        self.engine = engine
        self.settings = settings or default_settings
        self._clock = clock
        self.locks = lock_backend or get_lock_backend(engine, self.settings, clock=clock)
        self.codec = codec or get_codec(self.settings.SESSION_CODEC)
        self._session_factory = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )
        self._tables_initialized = False
        self._tables_init_lock = Lock()

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create the session and lock tables if they are missing."""
        if self._tables_initialized:
            return

        with self._tables_init_lock:
            # Double-check after acquiring lock
            if self._tables_initialized:
                return
            try:
                Base.metadata.create_all(
                    bind=self.engine,
                    tables=[SessionRecord.__table__, SessionLock.__table__],
                    checkfirst=True,
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to initialize session tables: {e}")
                raise StorageUnavailableError("schema setup", e) from e
            self._tables_initialized = True
            logger.debug("Session store tables initialized")

    @contextmanager
    def _db(
        self, operation: str, connection: Optional[Connection] = None
    ) -> Generator[Session, None, None]:
        """
        Session scope that turns driver failures into StorageUnavailableError.

        With ``connection`` the session runs on that connection (a native
        lock's) instead of checking one out of the pool.
        """
        self.ensure_schema()
        if connection is not None:
            db = self._session_factory(bind=connection)
        else:
            db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Session storage failure during {operation}: {e}",
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise StorageUnavailableError(operation, e) from e
        finally:
            db.close()

    def _release_lock(self, handle: LockHandle) -> None:
        try:
            self.locks.release(handle)
        except SQLAlchemyError as e:
            # Native locks die with their connection, table locks expire
            logger.error(
                f"Failed to release session lock: {e}",
                extra={"lock": handle.name.split(":", 1)[0], "error_type": type(e).__name__},
            )

    @staticmethod
    def lock_name(session_id: str) -> str:
        return f"session:{session_id}"

    def _cutoff(self, seconds: float) -> datetime:
        if seconds < 0:
            raise ValueError("window must not be negative")
        return self._clock() - timedelta(seconds=seconds)

    # ------------------------------------------------------------------
    # Live request path
    # ------------------------------------------------------------------

    def open(self, session_id: str) -> SessionLease:
        """
        Lock the session and read its payload.

        Blocks for up to ``SESSION_LOCK_WAIT_SECONDS``. On timeout either
        raises ``LockTimeoutError`` (policy ``fail``) or returns an unlocked
        lease (policy ``proceed``).

        Raises:
            LockTimeoutError: lock not obtained and the policy is ``fail``
            StorageUnavailableError: the database could not be reached
        """
        self.ensure_schema()
        timeout = self.settings.SESSION_LOCK_WAIT_SECONDS
        started = time.monotonic()
        try:
            handle = self.locks.acquire(self.lock_name(session_id), timeout)
        except SQLAlchemyError as e:
            logger.error(f"Session lock acquisition failed: {e}")
            raise StorageUnavailableError("lock", e) from e

        if handle is None:
            waited = time.monotonic() - started
            if self.settings.SESSION_LOCK_TIMEOUT_POLICY == "fail":
                logger.warning(
                    "Session lock timed out",
                    extra={"session": mask_session_id(session_id), "waited": round(waited, 3)},
                )
                raise LockTimeoutError(session_id, timeout)
            logger.warning(
                "Session lock timed out, continuing without it",
                extra={"session": mask_session_id(session_id), "waited": round(waited, 3)},
            )

        try:
            data = self.fetch(
                session_id, connection=handle.connection if handle is not None else None
            )
        except Exception:
            if handle is not None:
                self._release_lock(handle)
            raise
        return SessionLease(self, session_id, data, handle)

    def fetch(self, session_id: str, connection: Optional[Connection] = None) -> str:
        """Return the stored payload without locking, or '' for an unknown id."""
        with self._db("read", connection) as db:
            data = db.scalar(select(SessionRecord.data).where(SessionRecord.id == session_id))
        return data if data is not None else ""

    def _row_values(self, session_id: str, data: str, context: WriteContext) -> dict:
        return {
            "id": session_id,
            "user_id": _unsigned(context.user_id),
            "resource_id": _unsigned(context.resource_id),
            "data": data,
            "ts": self._clock(),
            "ip": encode_ip(context.client_ip) if self.settings.SESSION_TRACK_IP else 0,
            "ua": (
                clean_user_agent(context.user_agent)
                if self.settings.SESSION_TRACK_USER_AGENT
                else ""
            ),
        }

    def _upsert(self, db: Session, values: dict) -> None:
        table = SessionRecord.__table__
        dialect = self.engine.dialect.name

        if dialect in ("sqlite", "postgresql"):
            insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
            stmt = insert_fn(table).values(**values)
            new = stmt.excluded
            assignments = {column: new[column] for column in _MUTABLE_COLUMNS}
            # Never move ts backwards
            assignments["ts"] = case((table.c.ts > new.ts, table.c.ts), else_=new.ts)
            db.execute(stmt.on_conflict_do_update(index_elements=[table.c.id], set_=assignments))
            return

        if dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(table).values(**values)
            new = stmt.inserted
            assignments = {column: new[column] for column in _MUTABLE_COLUMNS}
            assignments["ts"] = case((table.c.ts > new.ts, table.c.ts), else_=new.ts)
            db.execute(stmt.on_duplicate_key_update(**assignments))
            return

        # Generic path: update first, insert when missing, retry the update if
        # a concurrent insert won the race
        changes = {column: values[column] for column in _MUTABLE_COLUMNS}
        changes["ts"] = case((table.c.ts > values["ts"], table.c.ts), else_=values["ts"])
        update_stmt = update(table).where(table.c.id == values["id"]).values(**changes)
        if db.execute(update_stmt).rowcount:
            return
        try:
            with db.begin_nested():
                db.execute(insert(table).values(**values))
        except IntegrityError:
            logger.debug("Concurrent insert detected, retrying update")
            db.execute(update_stmt)

    def write(
        self,
        session_id: str,
        data: str,
        context: Optional[WriteContext] = None,
        connection: Optional[Connection] = None,
    ) -> bool:
        """
        Insert or update the session row in one atomic statement.

        Does not touch the advisory lock; use ``SessionLease.write`` for the
        locked read-modify-write cycle. ``connection`` runs the upsert on a
        native lock's connection instead of a pooled one.

        Returns:
            True if the row was stored, False if storage failed (already logged)
        """
        values = self._row_values(session_id, data, context or WriteContext())
        try:
            with self._db("write", connection) as db:
                self._upsert(db, values)
                db.commit()
        except StorageUnavailableError:
            return False
        return True

    def destroy(self, session_id: str) -> bool:
        """
        Delete the server-side row for ``session_id``.

        Deleting an unknown id succeeds. Clearing the client's cookie is the
        web framework's job, not the store's.

        Raises:
            StorageUnavailableError: the database could not be reached
        """
        with self._db("destroy") as db:
            db.execute(delete(SessionRecord).where(SessionRecord.id == session_id))
            db.commit()
        logger.debug("Session destroyed", extra={"session": mask_session_id(session_id)})
        return True

    def garbage_collect(self, max_age_seconds: int) -> int:
        """
        Delete sessions whose last write is older than ``max_age_seconds``.

        Returns:
            Number of session rows removed
        """
        cutoff = self._cutoff(max_age_seconds)
        with self._db("garbage collection") as db:
            result = db.execute(delete(SessionRecord).where(SessionRecord.ts < cutoff))
            db.commit()
        removed = result.rowcount or 0

        try:
            stale_locks = self.locks.purge_expired()
        except SQLAlchemyError as e:
            raise StorageUnavailableError("garbage collection", e) from e

        logger.info(
            "Session garbage collection finished",
            extra={"removed": removed, "stale_locks": stale_locks, "max_age": max_age_seconds},
        )
        return removed

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _summary(row) -> SessionSummary:
        return SessionSummary(
            id=row.id,
            user_id=row.user_id,
            resource_id=row.resource_id,
            ts=row.ts,
            ip=decode_ip(row.ip),
            ua=row.ua,
        )

    def list_active(self, window_seconds: int = 300, limit: int = 100) -> List[SessionSummary]:
        """Sessions written within the window, newest first, without payloads."""
        if limit < 0:
            raise ValueError("limit must not be negative")
        cutoff = self._cutoff(window_seconds)
        query = (
            select(
                SessionRecord.id,
                SessionRecord.user_id,
                SessionRecord.resource_id,
                SessionRecord.ts,
                SessionRecord.ip,
                SessionRecord.ua,
            )
            .where(SessionRecord.ts >= cutoff)
            .order_by(SessionRecord.ts.desc(), SessionRecord.id)
            .limit(limit)
        )
        with self._db("list") as db:
            rows = db.execute(query).all()
        return [self._summary(row) for row in rows]

    def count(self, window_seconds: int = 300) -> int:
        """Number of sessions written within the window"""
        cutoff = self._cutoff(window_seconds)
        with self._db("count") as db:
            total = db.scalar(
                select(func.count()).select_from(SessionRecord).where(SessionRecord.ts >= cutoff)
            )
        return int(total or 0)

    def get_session_data(self, session_id: str) -> Optional[SessionDetail]:
        """
        Fetch a full record and decode its payload for inspection.

        The payload is decoded into a new dictionary; no live session state
        is read or modified.

        Raises:
            MalformedPayloadError: the payload does not match the codec
            StorageUnavailableError: the database could not be reached
        """
        with self._db("inspect") as db:
            record = db.get(SessionRecord, session_id)
            if record is None:
                return None
            summary = self._summary(record)
            data = record.data
        return SessionDetail(**summary.model_dump(), data=data, decoded=self.codec.decode(data))
