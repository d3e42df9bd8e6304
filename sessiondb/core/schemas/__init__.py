"""Pydantic schemas"""

from sessiondb.core.schemas.session import (
    GarbageCollectResult,
    SessionCount,
    SessionDetail,
    SessionList,
    SessionSummary,
)

__all__ = [
    "GarbageCollectResult",
    "SessionCount",
    "SessionDetail",
    "SessionList",
    "SessionSummary",
]
