from __future__ import annotations

import logging

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ..errors import TransactionError
from .metrics import observe_tx

logger = logging.getLogger(__name__)


class TransactionScope:
    """
    One BEGIN ... COMMIT/ROLLBACK boundary on the invocation's connection.

    The transaction begins on construction and must be explicitly committed
    or rolled back. After either, the scope is closed and cannot be reused.

    Rollback is best-effort: a failing ROLLBACK is logged and swallowed so
    that the error which caused it is the one that surfaces.

    Usage:
        scope = TransactionScope(conn, label="orders", mode="perTable")
        try:
            ...  # write rows on conn
            scope.commit()
        except Exception:
            if not scope.closed:
                scope.rollback()
            raise
    """

    def __init__(self, connection: Connection, label: str, mode: str) -> None:
        """
        Begin a new transaction.

        Args:
            connection: The invocation's connection
            label: What the scope covers (for logs and errors)
            mode: Transaction mode (for metrics)

        Raises:
            TransactionError: If BEGIN fails
        """
        self.label = label
        self.mode = mode
        self._closed = False
        try:
            # SQLAlchemy autobegins on any statement; those never belong to a scope
            if connection.in_transaction():
                connection.commit()
            self._tx = connection.begin()
        except SQLAlchemyError as exc:
            self._closed = True
            observe_tx(mode, "error")
            raise TransactionError(f"BEGIN failed for {label}: {exc}") from exc

    @property
    def closed(self) -> bool:
        return self._closed

    def commit(self) -> None:
        """
        Commit the transaction.

        Raises:
            RuntimeError: If the scope is already closed
            TransactionError: If COMMIT fails (the scope is rolled back)
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")

        status = "success"
        try:
            self._tx.commit()
        except SQLAlchemyError as exc:
            status = "error"
            self._safe_rollback()
            raise TransactionError(f"COMMIT failed for {self.label}: {exc}") from exc
        finally:
            self._closed = True
            observe_tx(self.mode, status)

    def rollback(self) -> None:
        """
        Roll back the transaction, swallowing rollback failures.

        Raises:
            RuntimeError: If the scope is already closed
        """
        if self._closed:
            raise RuntimeError("Transaction is already closed")
        try:
            self._safe_rollback()
        finally:
            self._closed = True
            observe_tx(self.mode, "rollback")

    def _safe_rollback(self) -> None:
        try:
            self._tx.rollback()
        except SQLAlchemyError as exc:
            logger.warning("ROLLBACK failed for %s: %s", self.label, exc)
