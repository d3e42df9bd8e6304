"""Session schema definitions for administrative views."""
from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class SessionSummary(BaseModel):
    """Session metadata without its payload"""

    id: str = Field(..., description="Session identifier")
    user_id: int = Field(0, description="Authenticated user id, 0 when anonymous")
    resource_id: int = Field(0, description="Current resource id, 0 when none")
    ts: datetime = Field(..., description="Time of the last write (UTC)")
    ip: str = Field("", description="Client address, empty when not tracked")
    ua: str = Field("", description="Client user agent, empty when not tracked")

    model_config = ConfigDict(from_attributes=True)


class SessionDetail(SessionSummary):
    """Full session record including the raw and decoded payload"""

    data: str = Field("", description="Raw serialized payload")
    decoded: Dict[str, Any] = Field(
        default_factory=dict, description="Payload decoded with the configured codec"
    )


class SessionList(BaseModel):
    """Schema for listing active sessions"""

    sessions: List[SessionSummary]
    window: int
    limit: int


class SessionCount(BaseModel):
    """Schema for the active session count"""

    count: int
    window: int


class GarbageCollectResult(BaseModel):
    """Schema for a garbage collection sweep"""

    removed: int
    max_age: int
