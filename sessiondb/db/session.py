from typing import Dict, Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from sessiondb.core.config import settings


def get_connect_args(database_url: str) -> Dict[str, Any]:
    """Get database-specific connection arguments"""
    if database_url.startswith("sqlite"):
        # Lock waiters and writers run on different threads
        return {"check_same_thread": False}
    return {}


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine with the connection arguments the dialect needs"""
    url = database_url or settings.DATABASE_URL
    return create_engine(
        url,
        connect_args=get_connect_args(url),
        pool_pre_ping=not url.startswith("sqlite"),
        # Session ids and payloads never appear in error messages
        hide_parameters=True,
    )


# Create database engine with appropriate connection args
engine = create_db_engine()
