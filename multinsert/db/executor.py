from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from sqlalchemy.engine import Connection, CursorResult
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from ..config import ConflictStrategy, ReturnSpec
from ..errors import ExecutionError
from .metrics import observe_row
from .models import OutcomeKind, RowAction, RowOutcome
from .statement import InsertPlan

logger = logging.getLogger(__name__)

# sqlite3 raises these unwrapped while binding values (e.g. integers past 64 bits)
_ROW_ERRORS = (SQLAlchemyError, OverflowError, TypeError, ValueError)


@dataclass
class ReturningResult:
    """
    Outcome of attempting the returning path.

    ``supported`` is False when the engine rejected the RETURNING clause
    itself; nothing was written in that case.
    """
    supported: bool
    rows: list[dict[str, Any]] = field(default_factory=list)
    lastrowid: Any = None


def _rejects_returning(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "returning" in message and "syntax error" in message


class RowExecutor:
    """
    Executes mapped rows one at a time on the invocation's connection.

    The returning path (``INSERT ... RETURNING *``) is used when a group asks
    for returned rows and the engine supports it. Support is taken from the
    dialect up front and cached; if the engine rejects the clause at run time
    the executor switches to the fallback path for the rest of the run.

    Outcome classification:
    - ``upsert``: a keyed pre-check decides ``updated`` vs ``inserted``
    - ``ignore``: a write that touched no row is ``skipped``
    - otherwise every successful write is ``inserted``
    """

    def __init__(
        self,
        connection: Connection,
        continue_on_error: bool = False,
        returning: Optional[bool] = None,
    ) -> None:
        self._conn = connection
        self.continue_on_error = continue_on_error
        if returning is None:
            returning = bool(getattr(connection.dialect, "insert_returning", False))
        self._returning = returning

    @property
    def returning_supported(self) -> bool:
        return self._returning

    def execute(self, plan: InsertPlan, row: Mapping[str, Any], ret: ReturnSpec) -> RowOutcome:
        """
        Write one row.

        Raises:
            ExecutionError: If the write fails and continue-on-error is disabled
        """
        params = plan.bind(row)
        try:
            existed = self._exists(plan, row)
            outcome = None
            if ret.active and self._returning:
                attempt = self._try_returning(plan, params)
                if attempt.supported:
                    outcome = self._from_returning(plan, row, ret, attempt, existed)
                else:
                    logger.info("RETURNING not supported by the engine; using last rowid")
                    self._returning = False
            if outcome is None:
                outcome = self._fallback(plan, row, params, existed)
        except _ROW_ERRORS as exc:
            if not self.continue_on_error:
                raise ExecutionError(f"Insert into {plan.table} failed: {exc}", table=plan.table) from exc
            logger.warning("Row insert into %s failed, continuing: %s", plan.table, exc)
            outcome = RowOutcome(kind=OutcomeKind.ERROR, data=row, error=exc)

        observe_row(plan.table, outcome.kind.value)
        return outcome

    def _exists(self, plan: InsertPlan, row: Mapping[str, Any]) -> bool:
        if plan.exists_sql is None:
            return False
        result = self._conn.exec_driver_sql(plan.exists_sql, plan.key_values(row))
        try:
            return result.first() is not None
        finally:
            result.close()

    def _try_returning(self, plan: InsertPlan, params: tuple[Any, ...]) -> ReturningResult:
        sql = plan.statement.sql(returning=True)
        logger.debug("Executing %s", sql)
        try:
            result: CursorResult = self._conn.exec_driver_sql(sql, params)
        except OperationalError as exc:
            if _rejects_returning(exc):
                return ReturningResult(supported=False)
            raise
        try:
            rows = [dict(r) for r in result.mappings()]
            return ReturningResult(supported=True, rows=rows, lastrowid=result.lastrowid)
        finally:
            result.close()

    def _from_returning(
        self,
        plan: InsertPlan,
        row: Mapping[str, Any],
        ret: ReturnSpec,
        attempt: ReturningResult,
        existed: bool,
    ) -> RowOutcome:
        if not attempt.rows:
            # OR IGNORE hit a conflict; nothing was written
            return RowOutcome(kind=OutcomeKind.SKIPPED, data=row, action=RowAction.AFFECTED)

        written = attempt.rows[0]
        row_id = written[ret.id_column] if ret.id_column in written else attempt.lastrowid
        return RowOutcome(
            kind=self._classify(plan, existed),
            data=row,
            action=RowAction.AFFECTED,
            id=row_id,
        )

    def _fallback(
        self,
        plan: InsertPlan,
        row: Mapping[str, Any],
        params: tuple[Any, ...],
        existed: bool,
    ) -> RowOutcome:
        sql = plan.statement.sql()
        logger.debug("Executing %s", sql)
        result = self._conn.exec_driver_sql(sql, params)
        try:
            rowcount = result.rowcount
            lastrowid = result.lastrowid
        finally:
            result.close()

        if plan.conflict.strategy == ConflictStrategy.IGNORE and rowcount == 0:
            return RowOutcome(kind=OutcomeKind.SKIPPED, data=row, action=RowAction.INSERTED)

        kind = self._classify(plan, existed)
        row_id = lastrowid
        if kind == OutcomeKind.UPDATED:
            # last rowid is not refreshed by DO UPDATE; report the conflicting key
            keys = plan.key_values(row)
            row_id = keys[0] if len(keys) == 1 else None
        return RowOutcome(kind=kind, data=row, action=RowAction.INSERTED, id=row_id)

    @staticmethod
    def _classify(plan: InsertPlan, existed: bool) -> OutcomeKind:
        if plan.conflict.strategy == ConflictStrategy.UPSERT and existed:
            return OutcomeKind.UPDATED
        return OutcomeKind.INSERTED
