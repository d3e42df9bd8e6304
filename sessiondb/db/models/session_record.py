from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from sessiondb.db.base import Base

SESSION_ID_LENGTH = 32
USER_AGENT_MAX_LENGTH = 255


class SessionRecord(Base):
    """One row per active web session, keyed by the caller's session id."""

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(SESSION_ID_LENGTH), primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False, default=0)
    resource_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False, default=0)
    # MEDIUMTEXT on MySQL/MariaDB where plain TEXT stops at 64KB
    data: Mapped[str] = mapped_column(
        Text().with_variant(mysql.MEDIUMTEXT(), "mysql", "mariadb"),
        nullable=False,
        default="",
    )
    ts: Mapped[datetime] = mapped_column(
        DateTime, index=True, nullable=False, server_default=func.now()
    )
    ip: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    ua: Mapped[str] = mapped_column(
        String(USER_AGENT_MAX_LENGTH), nullable=False, default="", server_default=""
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SessionRecord(id={self.id[:6]!r}..., user_id={self.user_id}, ts={self.ts})>"
