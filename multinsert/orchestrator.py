from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence

from sqlalchemy.engine import Connection, Engine

from .config import GroupConfig, MultiInsertConfig, TxConfig, TxMode
from .context import InvocationContext, Resolver, TypedResolver, ValueKind, get_path
from .db.executor import RowExecutor
from .db.metrics import observe_group
from .db.models import RowOutcome
from .db.session import DbSession, engine_for
from .db.statement import InsertPlan
from .db.tx import TransactionScope
from .errors import ExecutionError, TransactionError
from .mapping import RowMapper
from .results import ResultAggregator, RunSummary, Timings

logger = logging.getLogger(__name__)

_SCOPE_ERRORS = (ExecutionError, TransactionError)


@dataclass
class PreparedGroup:
    """A group with its rows mapped and its statement compiled."""
    config: GroupConfig
    rows: list[dict[str, Any]]
    plan: Optional[InsertPlan] = None
    # committed outcomes this group asked to have returned
    returned: list[RowOutcome] = field(default_factory=list)

    @property
    def table(self) -> str:
        return self.config.table

    @property
    def skipped(self) -> bool:
        return self.plan is None


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterator[Sequence[dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class TransactionOrchestrator:
    """
    Drives the row executor over every group inside the configured
    transaction boundaries.

    - ``all``: one scope around every group
    - ``perTable``: one scope per group
    - ``chunk``: one scope per ``chunk_size`` rows of each group
    - ``off``: no scopes; the connection autocommits each statement

    ``all`` and ``chunk`` are exclusive: a single mode is configured, so
    chunks are never nested inside a run-wide transaction.

    Without continue-on-error, the first failure rolls back the enclosing
    scope and propagates. With it, row failures are counted and a failing
    BEGIN/COMMIT rolls back just that scope before moving on.
    """

    def __init__(
        self,
        connection: Connection,
        tx: TxConfig,
        executor: RowExecutor,
        aggregator: ResultAggregator,
    ) -> None:
        self._conn = connection
        self.tx = tx
        self.executor = executor
        self.aggregator = aggregator

    def run(self, groups: Sequence[PreparedGroup], context: InvocationContext) -> None:
        for group in groups:
            self.aggregator.register(group.table)
            if group.skipped:
                self.aggregator.skip_group(group.table, len(group.rows))

        active = [g for g in groups if not g.skipped]
        if self.tx.mode == TxMode.ALL:
            self._run_all(active, context)
        elif self.tx.mode == TxMode.PER_TABLE:
            for group in active:
                self._run_scoped(group, group.rows, label=group.table)
                self._publish(group, context)
        elif self.tx.mode == TxMode.CHUNK:
            for group in active:
                for index, chunk in enumerate(_chunks(group.rows, self.tx.chunk_size)):
                    self._run_scoped(group, chunk, label=f"{group.table} chunk {index + 1}")
                self._publish(group, context)
        else:
            for group in active:
                outcomes: list[RowOutcome] = []
                self._execute_rows(group, group.rows, outcomes)
                self._fold(group, outcomes)
                self._publish(group, context)

    def _fold(self, group: PreparedGroup, outcomes: list[RowOutcome]) -> None:
        group.returned.extend(self.aggregator.fold(group.table, group.config.ret, outcomes))

    def _publish(self, group: PreparedGroup, context: InvocationContext) -> None:
        self.aggregator.publish(group.table, group.config.ret, group.returned, context)

    def _execute_rows(
        self,
        group: PreparedGroup,
        rows: Sequence[dict[str, Any]],
        outcomes: list[RowOutcome],
    ) -> None:
        start = time.monotonic()
        try:
            for row in rows:
                outcomes.append(self.executor.execute(group.plan, row, group.config.ret))
        finally:
            observe_group(group.table, time.monotonic() - start)

    def _run_scoped(self, group: PreparedGroup, rows: Sequence[dict[str, Any]], label: str) -> None:
        outcomes: list[RowOutcome] = []
        scope = None
        try:
            scope = TransactionScope(self._conn, label=label, mode=self.tx.mode.value)
            self._execute_rows(group, rows, outcomes)
            scope.commit()
        except _SCOPE_ERRORS as exc:
            if scope is not None and not scope.closed:
                scope.rollback()
            if not self.tx.continue_on_error:
                raise
            logger.warning("Rolled back %s, continuing: %s", label, exc)
            self.aggregator.fold(group.table, group.config.ret, outcomes, committed=False)
            self.aggregator.fail_scope(group.table)
            return
        self._fold(group, outcomes)

    def _run_all(self, groups: Sequence[PreparedGroup], context: InvocationContext) -> None:
        pending: list[tuple[PreparedGroup, list[RowOutcome]]] = []
        current: Optional[PreparedGroup] = None
        scope = None
        try:
            scope = TransactionScope(self._conn, label="all groups", mode=self.tx.mode.value)
            for group in groups:
                current = group
                outcomes: list[RowOutcome] = []
                pending.append((group, outcomes))
                self._execute_rows(group, group.rows, outcomes)
            scope.commit()
        except _SCOPE_ERRORS as exc:
            if scope is not None and not scope.closed:
                scope.rollback()
            if not self.tx.continue_on_error:
                raise
            logger.warning("Rolled back all groups, continuing: %s", exc)
            for group, outcomes in pending:
                self.aggregator.fold(group.table, group.config.ret, outcomes, committed=False)
            failed = current or (groups[0] if groups else None)
            if failed is not None:
                self.aggregator.fail_scope(failed.table)
            return

        for group, outcomes in pending:
            self._fold(group, outcomes)
        for group in groups:
            self._publish(group, context)


class MultiInsert:
    """
    Multi-table bulk INSERT/UPSERT for one configured set of groups.

    Every group is prepared (source resolved, rows mapped, statement
    compiled) before the database is touched, so configuration and
    resolution errors never leave partial writes behind.

    Usage:
        writer = MultiInsert(MultiInsertConfig.from_dict(node_config))
        summary = writer.run(InvocationContext(message={"payload": rows}))
    """

    def __init__(
        self,
        config: MultiInsertConfig,
        resolver: Optional[Resolver] = None,
        engine: Optional[Engine] = None,
        returning: Optional[bool] = None,
    ) -> None:
        """
        Args:
            config: Validated configuration
            resolver: Resolves typed references; defaults to TypedResolver
            engine: Engine to use instead of one built from ``db_path``
            returning: Force the returning path on/off instead of asking the dialect
        """
        self.config = config
        self.resolver = resolver or TypedResolver()
        self.mapper = RowMapper(self.resolver)
        self._engine = engine
        self._returning = returning

    def prepare(self, context: InvocationContext) -> list[PreparedGroup]:
        groups = []
        for group in self.config.groups:
            raw = self.resolver.resolve(group.source_type, group.source, context)
            mapped = self.mapper.map(raw, group)
            if not mapped.columns:
                logger.warning("Group '%s' has no columns after mapping; skipping.", group.table)
                groups.append(PreparedGroup(config=group, rows=mapped.rows))
                continue
            plan = InsertPlan.compile(group.table, mapped.columns, group.conflict)
            groups.append(PreparedGroup(config=group, rows=mapped.rows, plan=plan))
        return groups

    def run(self, context: InvocationContext) -> RunSummary:
        """
        Execute every group and attach the summary to the message.

        Raises:
            ConfigurationError: Invalid identifiers, upsert settings or database path
            ResolutionError: A source or mapping value could not be resolved
            ExecutionError: A row failed without continue-on-error
            TransactionError: BEGIN/COMMIT failed without continue-on-error
        """
        t0 = time.monotonic()
        target = None
        if self._engine is None:
            target = self.resolver.resolve(self.config.db_path_type, self.config.db_path, context)
        groups = self.prepare(context)
        engine = self._engine or engine_for(target)

        aggregator = ResultAggregator()
        try:
            with DbSession(engine, autocommit=self.config.tx.mode == TxMode.OFF) as session:
                t_open = time.monotonic()
                session.apply_tuning(self.config.tuning.directives())

                executor = RowExecutor(
                    session.connection,
                    continue_on_error=self.config.tx.continue_on_error,
                    returning=self._returning,
                )
                orchestrator = TransactionOrchestrator(
                    session.connection, self.config.tx, executor, aggregator
                )
                orchestrator.run(groups, context)
                t_exec = time.monotonic()
        finally:
            if self._engine is None:
                engine.dispose()

        timings = Timings(
            ms_open=round((t_open - t0) * 1000),
            ms_exec=round((t_exec - t_open) * 1000),
            ms_total=round((time.monotonic() - t0) * 1000),
        )
        summary = aggregator.summary(timings)

        self._attach_summary(context, summary)
        if self.config.emit_payload_summary:
            context.message["payload"] = summary.as_dict()

        counts = summary.counts
        logger.info(
            "Multi-insert finished: ins %d upd %d err %d skip %d in %d ms",
            counts["inserted"], counts["updated"], counts["errors"], counts["skipped"],
            timings.ms_total,
        )
        return summary

    def _attach_summary(self, context: InvocationContext, summary: RunSummary) -> None:
        # returned rows may already live under the summary path (sqlite.<table>.rows)
        existing = get_path(context.message, self.config.summary_path)
        if isinstance(existing, dict):
            existing.update(summary.as_dict())
        else:
            context.store(ValueKind.MSG, self.config.summary_path, summary.as_dict())
