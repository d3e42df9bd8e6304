"""
Administrative session endpoints with rate limiting.

Operators use these endpoints to see who is active, inspect a single
session's contents, drop a session, or trigger a garbage collection sweep.
None of them take the per-session lock.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status

from sessiondb.core.config import settings
from sessiondb.core.exceptions import MalformedPayloadError, StorageUnavailableError
from sessiondb.core.limiter import limiter
from sessiondb.core.logging_config import mask_session_id
from sessiondb.core.schemas.session import (
    GarbageCollectResult,
    SessionCount,
    SessionDetail,
    SessionList,
)
from sessiondb.core.utils.session_store import SessionStore
from sessiondb.db.models.session_record import SESSION_ID_LENGTH

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    """Dependency returning the process-wide store bound to the configured database"""
    return SessionStore()


def _storage_unavailable(e: StorageUnavailableError) -> HTTPException:
    logger.error(f"Session storage unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Session storage unavailable",
    )


@router.get("", response_model=SessionList)
@limiter.limit(settings.rate_limit_admin_endpoints)
def list_sessions(
    request: Request,
    window: int = Query(300, ge=0, description="Activity window in seconds"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of sessions"),
    store: SessionStore = Depends(get_session_store),
) -> SessionList:
    """
    List sessions written within the activity window, newest first.

    Payloads are never included. Rate limit: admin endpoints limit per minute per IP.
    """
    try:
        sessions = store.list_active(window_seconds=window, limit=limit)
    except StorageUnavailableError as e:
        raise _storage_unavailable(e)
    return SessionList(sessions=sessions, window=window, limit=limit)


@router.get("/count", response_model=SessionCount)
@limiter.limit(settings.rate_limit_admin_endpoints)
def count_sessions(
    request: Request,
    window: int = Query(300, ge=0, description="Activity window in seconds"),
    store: SessionStore = Depends(get_session_store),
) -> SessionCount:
    """Count sessions written within the activity window."""
    try:
        total = store.count(window_seconds=window)
    except StorageUnavailableError as e:
        raise _storage_unavailable(e)
    return SessionCount(count=total, window=window)


@router.post("/gc", response_model=GarbageCollectResult)
@limiter.limit(settings.rate_limit_maintenance_endpoints)
def collect_garbage(
    request: Request,
    max_age: Optional[int] = Query(
        None, ge=0, description="Maximum session age in seconds (defaults to the configured lifetime)"
    ),
    store: SessionStore = Depends(get_session_store),
) -> GarbageCollectResult:
    """
    Delete sessions older than ``max_age`` seconds.

    Rate limit: maintenance endpoints limit per minute per IP.
    """
    age = settings.SESSION_MAX_LIFETIME_SECONDS if max_age is None else max_age
    try:
        removed = store.garbage_collect(age)
    except StorageUnavailableError as e:
        raise _storage_unavailable(e)
    return GarbageCollectResult(removed=removed, max_age=age)


@router.get("/{session_id}", response_model=SessionDetail)
@limiter.limit(settings.rate_limit_admin_endpoints)
def get_session(
    request: Request,
    session_id: str = Path(..., min_length=1, max_length=SESSION_ID_LENGTH),
    store: SessionStore = Depends(get_session_store),
) -> SessionDetail:
    """Show one session with its payload decoded for inspection."""
    try:
        detail = store.get_session_data(session_id)
    except StorageUnavailableError as e:
        raise _storage_unavailable(e)
    except MalformedPayloadError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Session payload could not be decoded: {e}",
        )

    if detail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return detail


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(settings.rate_limit_maintenance_endpoints)
def delete_session(
    request: Request,
    session_id: str = Path(..., min_length=1, max_length=SESSION_ID_LENGTH),
    store: SessionStore = Depends(get_session_store),
) -> None:
    """
    Remove a session's server-side row.

    The client keeps its cookie; the next request simply starts a new session.
    """
    try:
        store.destroy(session_id)
    except StorageUnavailableError as e:
        raise _storage_unavailable(e)
    logger.info("Session removed by operator", extra={"session": mask_session_id(session_id)})
