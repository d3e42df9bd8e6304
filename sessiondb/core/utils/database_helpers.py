"""
Database helper utilities for sessiondb.

Provides dialect detection, connectivity and health reporting, and the
schema upgrade that adds the client tracking columns to older session tables.
"""

import logging
from typing import Dict, Any, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sessiondb.db.models.session_record import SessionRecord, USER_AGENT_MAX_LENGTH

logger = logging.getLogger(__name__)

# Columns that older session tables were created without
_TRACKING_COLUMNS = {
    "ip": "BIGINT NOT NULL DEFAULT 0",
    "ua": f"VARCHAR({USER_AGENT_MAX_LENGTH}) NOT NULL DEFAULT ''",
}


def _resolve_engine(engine: Optional[Engine]) -> Engine:
    if engine is not None:
        return engine
    from sessiondb.db.session import engine as default_engine
    return default_engine


def get_database_type(engine: Optional[Engine] = None) -> str:
    """
    Get the database type of the engine.

    Returns:
        str: Database type ('sqlite', 'postgresql', 'mysql', etc.)
    """
    name = _resolve_engine(engine).dialect.name
    return "mysql" if name == "mariadb" else name


def get_database_info(engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Get database connection information and metadata.

    Returns:
        Dict containing database type, connection status, and metadata
    """
    engine = _resolve_engine(engine)
    db_type = get_database_type(engine)
    info: Dict[str, Any] = {
        "type": db_type,
        "url": engine.url.render_as_string(hide_password=True),
        "connected": False,
        "tables": [],
        "version": None,
        "error": None
    }

    try:
        with engine.connect() as conn:
            info["connected"] = True

            if db_type == "sqlite":
                info["version"] = conn.execute(text("SELECT sqlite_version()")).scalar()
            elif db_type in ("postgresql", "mysql"):
                version_str = conn.execute(text("SELECT version()")).scalar()
                info["version"] = str(version_str).split()[1 if db_type == "postgresql" else 0]

        info["tables"] = inspect(engine).get_table_names()

    except SQLAlchemyError as e:
        logger.error(f"Database connection error: {e}")
        info["error"] = str(e)

    return info


def check_database_health(engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Perform database health check.

    Returns:
        Dict containing health status and metrics
    """
    engine = _resolve_engine(engine)
    health: Dict[str, Any] = {
        "status": "healthy",
        "database_type": get_database_type(engine),
        "connected": False,
        "table_count": 0,
        "sessions_table": False,
        "connection_pool_status": "unknown",
        "last_error": None
    }

    db_info = get_database_info(engine)
    health["connected"] = db_info["connected"]
    health["table_count"] = len(db_info["tables"])
    health["sessions_table"] = SessionRecord.__tablename__ in db_info["tables"]

    if db_info["error"]:
        health["status"] = "unhealthy"
        health["last_error"] = db_info["error"]
    elif not health["sessions_table"]:
        health["status"] = "warning"
        health["last_error"] = "Sessions table missing - database may need initialization"

    pool = engine.pool
    if hasattr(pool, 'status'):
        health["connection_pool_status"] = str(pool.status())

    return health


def upgrade_session_schema(engine: Optional[Engine] = None) -> List[str]:
    """
    Add client tracking columns missing from an existing sessions table.

    Returns:
        Names of the columns that were added
    """
    engine = _resolve_engine(engine)
    inspector = inspect(engine)
    table = SessionRecord.__tablename__
    if table not in inspector.get_table_names():
        return []

    existing = {column["name"] for column in inspector.get_columns(table)}
    added = []
    with engine.begin() as conn:
        for column, ddl in _TRACKING_COLUMNS.items():
            if column in existing:
                continue
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            added.append(column)

    if added:
        logger.info("Upgraded sessions table", extra={"added_columns": added})
    return added
