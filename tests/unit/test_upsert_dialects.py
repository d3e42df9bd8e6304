"""
Upsert statements for the server dialects

The store picks its upsert form from the engine's dialect. These tests build
the statements against mocked sessions and compile them for PostgreSQL and
MySQL without a live server.
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import mysql, postgresql
from sqlalchemy.exc import IntegrityError

from sessiondb.core.utils.session_store import SessionStore

pytestmark = pytest.mark.unit


def _store(dialect_name, test_settings):
    engine = MagicMock()
    engine.dialect.name = dialect_name
    return SessionStore(engine=engine, settings=test_settings, lock_backend=MagicMock())


def _values():
    return {
        "id": "a" * 32,
        "user_id": 7,
        "resource_id": 0,
        "data": "k=1",
        "ts": datetime(2026, 1, 1, 12, 0, 0),
        "ip": 0,
        "ua": "",
    }


def _executed_sql(db, dialect, index=0):
    statement = db.execute.call_args_list[index][0][0]
    return " ".join(str(statement.compile(dialect=dialect)).split())


def test_postgresql_uses_on_conflict(test_settings):
    store = _store("postgresql", test_settings)
    db = MagicMock()

    store._upsert(db, _values())

    assert db.execute.call_count == 1
    sql = _executed_sql(db, postgresql.dialect())
    assert sql.startswith("INSERT INTO sessions")
    assert "ON CONFLICT (id) DO UPDATE SET" in sql
    assert "data = excluded.data" in sql
    assert "CASE WHEN (sessions.ts > excluded.ts) THEN sessions.ts ELSE excluded.ts END" in sql


@pytest.mark.parametrize("dialect_name", ["mysql", "mariadb"])
def test_mysql_uses_on_duplicate_key(dialect_name, test_settings):
    store = _store(dialect_name, test_settings)
    db = MagicMock()

    store._upsert(db, _values())

    assert db.execute.call_count == 1
    sql = _executed_sql(db, mysql.dialect())
    assert sql.startswith("INSERT INTO sessions")
    assert "ON DUPLICATE KEY UPDATE" in sql
    assert "CASE WHEN (sessions.ts >" in sql
    for column in ("user_id", "resource_id", "data", "ip", "ua"):
        assert f"{column} = " in sql.split("ON DUPLICATE KEY UPDATE", 1)[1]


class TestGenericDialect:

    def test_existing_row_is_updated_only(self, test_settings):
        store = _store("mssql", test_settings)
        db = MagicMock()
        db.execute.return_value.rowcount = 1

        store._upsert(db, _values())

        assert db.execute.call_count == 1
        assert _executed_sql(db, postgresql.dialect()).startswith("UPDATE sessions SET")
        db.begin_nested.assert_not_called()

    def test_missing_row_is_inserted(self, test_settings):
        store = _store("mssql", test_settings)
        db = MagicMock()
        db.execute.return_value.rowcount = 0

        store._upsert(db, _values())

        assert db.execute.call_count == 2
        db.begin_nested.assert_called_once()
        assert _executed_sql(db, postgresql.dialect(), 1).startswith("INSERT INTO sessions")

    def test_lost_insert_race_retries_update(self, test_settings):
        store = _store("mssql", test_settings)
        db = MagicMock()
        db.begin_nested.return_value.__exit__.return_value = False
        missing = MagicMock(rowcount=0)
        db.execute.side_effect = [
            missing,
            IntegrityError("INSERT", {}, Exception("duplicate key")),
            MagicMock(rowcount=1),
        ]

        store._upsert(db, _values())

        assert db.execute.call_count == 3
        assert _executed_sql(db, postgresql.dialect(), 2).startswith("UPDATE sessions SET")
