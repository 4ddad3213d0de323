from __future__ import annotations

import os
import re
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """
    SQLite URL for tests.

    Set MULTINSERT_TEST_DB_URL to point the suite at a specific database file;
    otherwise every test gets its own file under tmp_path.
    """
    return os.environ.get("MULTINSERT_TEST_DB_URL", f"sqlite:///{tmp_path / 'multinsert.db'}")


@pytest.fixture
def engine(db_url: str) -> Iterator[Engine]:
    """
    SQLAlchemy engine for tests.

    Unpooled like the engines MultiInsert builds itself, so per-connection
    PRAGMAs applied by a run do not leak into fixtures or later runs.

    We fail fast if the database cannot be opened, so failures are actionable.
    """
    eng = create_engine(db_url, poolclass=NullPool)
    try:
        with eng.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as exc:  # pragma: no cover
        pytest.fail(
            "Test database is not reachable.\n"
            f"- MULTINSERT_TEST_DB_URL={db_url!r}\n"
            f"- Underlying error: {exc}",
            pytrace=False,
        )

    yield eng
    eng.dispose()


@pytest.fixture
def returning_engine(engine: Engine) -> Engine:
    """The test engine, skipping when its SQLite build lacks RETURNING (< 3.35)."""
    if not engine.dialect.insert_returning:
        pytest.skip("SQLite build does not support RETURNING")
    return engine


def _sanitize_table_name(name: str) -> str:
    name = re.sub(r"[^a-zA-Z0-9_]+", "_", name).strip("_").lower()
    if not name:
        name = "t"
    return name[:48]


@pytest.fixture
def table_factory(engine: Engine, request: pytest.FixtureRequest) -> Iterator[Callable[[str], str]]:
    """
    Factory fixture creating per-test tables.

    Usage:
        table = table_factory("id INTEGER PRIMARY KEY, name TEXT")
    """
    created: list[str] = []

    def _create(schema_sql: str) -> str:
        base = _sanitize_table_name(f"t_{request.node.name}")
        suffix = uuid.uuid4().hex[:10]
        table = f"{base}_{suffix}"

        with engine.begin() as conn:
            conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")
            conn.exec_driver_sql(f"CREATE TABLE {table} ({schema_sql})")

        created.append(table)
        return table

    yield _create

    with engine.begin() as conn:
        for table in reversed(created):
            conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")


@pytest.fixture
def fresh_table(table_factory: Callable[[str], str]) -> str:
    """
    A default table used across tests.

    Includes:
    - INTEGER PRIMARY KEY `id` (rowid alias, conflict target)
    - nullable `name` and `value`
    """
    return table_factory("id INTEGER PRIMARY KEY, name TEXT, value INTEGER")


@pytest.fixture
def fetch_rows(engine: Engine) -> Callable[[str], list[dict]]:
    """Read back every row of a table ordered by rowid."""

    def _fetch(table: str) -> list[dict]:
        with engine.connect() as conn:
            result = conn.exec_driver_sql(f"SELECT * FROM {table} ORDER BY rowid")
            return [dict(row) for row in result.mappings()]

    return _fetch
