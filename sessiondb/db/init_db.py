"""Initialize the database with proper schema"""

import logging
from typing import Optional

from sqlalchemy.engine import Engine

from sessiondb.core.utils.database_helpers import upgrade_session_schema
from sessiondb.db.base import Base

# Import all models explicitly to register them with SQLAlchemy
# This ensures all tables are created when create_all() is called
from sessiondb.db.models import session_lock as _model_session_lock  # noqa: F401
from sessiondb.db.models import session_record as _model_session_record  # noqa: F401

logger = logging.getLogger(__name__)


def init_database(engine: Optional[Engine] = None, upgrade: bool = True) -> None:
    """Create all tables with proper schema, first upgrading an older sessions table"""
    if engine is None:
        from sessiondb.db.session import engine as default_engine
        engine = default_engine
    try:
        logger.info("Creating database tables...")
        if upgrade:
            upgrade_session_schema(engine)
        Base.metadata.create_all(bind=engine)

        table_names = [table.name for table in Base.metadata.sorted_tables]
        logger.info("Database initialized", extra={
            "table_count": len(table_names),
            "tables": table_names
        })

    except Exception as e:
        logger.error(f"Error initializing database: {e}", extra={
            "error_type": type(e).__name__,
            "database_url": "[REDACTED]"  # Don't log connection strings
        })
        raise


if __name__ == "__main__":
    init_database()
