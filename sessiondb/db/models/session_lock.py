from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from sessiondb.db.base import Base


class SessionLock(Base):
    """Named lock rows for databases without native advisory locks."""

    __tablename__ = "session_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SessionLock(name={self.name!r}, expires_at={self.expires_at})>"
