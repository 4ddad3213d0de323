from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


def engine_for(target: object) -> Engine:
    """
    Create an engine for a resolved database target.

    A value containing ``://`` is taken as a SQLAlchemy URL; anything else is
    an SQLite file path. Connections are not pooled across invocations.
    """
    if not isinstance(target, str) or not target.strip():
        raise ConfigurationError("Invalid database path")
    target = target.strip()
    url = target if "://" in target else f"sqlite:///{target}"
    try:
        return create_engine(url, poolclass=NullPool)
    except (SQLAlchemyError, ValueError) as exc:
        raise ConfigurationError(f"Invalid database path {target!r}: {exc}") from exc


class DbSession:
    """
    The single connection used by one invocation.

    Transactions are not opened here; the orchestrator owns every
    BEGIN/COMMIT/ROLLBACK boundary. With ``autocommit=True`` the driver
    commits each statement on its own.

    Use as:
        with DbSession(engine) as session:
            session.apply_tuning(["PRAGMA journal_mode=WAL"])
            conn = session.connection
    """

    def __init__(self, engine: Engine, autocommit: bool = False) -> None:
        self.engine = engine
        self.autocommit = autocommit
        self._conn: Connection | None = None

    def __enter__(self) -> "DbSession":
        if self._conn is not None:
            raise RuntimeError("DbSession is already active; nested sessions are not allowed")
        try:
            self._conn = self.engine.connect()
        except SQLAlchemyError as exc:
            raise ConfigurationError(f"Cannot open database {self.engine.url!r}: {exc}") from exc
        if self.autocommit:
            self._conn.execution_options(isolation_level="AUTOCOMMIT")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._conn is not None and self._conn.in_transaction():
                self._conn.rollback()
        finally:
            if self._conn is not None:
                self._conn.close()
            self._conn = None

        # propagate exceptions (if any)
        return False

    @property
    def connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbSession is not active; use within a context manager")
        return self._conn

    def apply_tuning(self, directives: Iterable[str]) -> list[str]:
        """
        Run tuning directives one by one. Failures are logged and skipped.

        Returns:
            The directives that failed
        """
        conn = self.connection
        failed = []
        for directive in directives:
            try:
                conn.exec_driver_sql(directive).close()
            except SQLAlchemyError as exc:
                logger.warning("Tuning directive %r failed: %s", directive, exc)
                failed.append(directive)

        # leave no implicit transaction open for the orchestrator
        if conn.in_transaction():
            conn.commit()
        return failed
