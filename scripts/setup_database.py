#!/usr/bin/env python3
"""
Database setup script for sessiondb.

Upgrades an older sessions table with the client tracking columns, creates
any missing tables and reports which advisory lock backend the store will
use on this database.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from sessiondb.core.config import settings as default_settings
from sessiondb.core.utils.database_helpers import (
    check_database_health,
    get_database_info,
    upgrade_session_schema,
)
from sessiondb.db.init_db import init_database
from sessiondb.db.locks import lock_backend_name
from sessiondb.db.models.session_lock import SessionLock


def report_lock_backend(engine, config) -> bool:
    """Print the lock backend; the table backend needs the session_locks table"""
    backend = lock_backend_name(engine, config)
    print(f"Lock Backend: {backend}")

    if backend != "table":
        print("  Lock connections: unpooled, one per request holding a session lock")
        return True

    if SessionLock.__tablename__ in inspect(engine).get_table_names():
        print(f"  ✅ {SessionLock.__tablename__} table present")
        return True
    print(f"  ❌ {SessionLock.__tablename__} table missing")
    return False


def main(engine=None, config=None) -> bool:
    """Prepare the configured database for session storage"""
    if engine is None:
        from sessiondb.db.session import engine
    config = config or default_settings

    print("🗄️  sessiondb Database Setup")
    print("=" * 40)

    db_info = get_database_info(engine)
    print(f"Database URL: {db_info['url']}")
    print(f"Database Type: {db_info['type']}")

    if db_info['error']:
        print(f"❌ Connection Error: {db_info['error']}")
        return False

    if db_info['version']:
        print(f"Database Version: {db_info['version']}")

    print(f"Existing Tables: {len(db_info['tables'])}")
    for table in sorted(db_info['tables']):
        print(f"  - {table}")

    try:
        print("\n🔧 Upgrading sessions table...")
        added = upgrade_session_schema(engine)
        if added:
            print(f"Added columns: {', '.join(added)}")
        else:
            print("Sessions table already current")

        print("\n🔧 Creating missing tables...")
        init_database(engine, upgrade=False)
    except SQLAlchemyError as e:
        print(f"❌ Database initialization failed: {e}")
        return False

    print()
    locks_ready = report_lock_backend(engine, config)

    health = check_database_health(engine)
    print(f"Health Status: {health['status']}")
    if health['status'] != 'healthy':
        print(f"⚠️  Warning: {health['last_error']}")
        return False

    return locks_ready


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
