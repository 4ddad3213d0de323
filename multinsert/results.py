from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

from .config import ReturnMode, ReturnSpec
from .context import InvocationContext
from .db.models import OutcomeKind, RowOutcome

logger = logging.getLogger(__name__)

_COUNTERS = ("inserted", "updated", "errors", "skipped")
_COUNTER_FOR_KIND = {
    OutcomeKind.INSERTED: "inserted",
    OutcomeKind.UPDATED: "updated",
    OutcomeKind.SKIPPED: "skipped",
    OutcomeKind.ERROR: "errors",
}


@dataclass
class GroupResult:
    """Per-table tally. ``total`` counts rows attempted."""
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    skipped: int = 0
    total: int = 0
    returned: list[RowOutcome] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        return self.freeze().as_dict()

    def freeze(self) -> "TableSummary":
        return TableSummary(
            inserted=self.inserted,
            updated=self.updated,
            errors=self.errors,
            skipped=self.skipped,
            total=self.total,
            returned=tuple(self.returned),
        )


@dataclass(frozen=True)
class TableSummary:
    """Emitted, read-only copy of a GroupResult."""
    inserted: int
    updated: int
    errors: int
    skipped: int
    total: int
    returned: tuple[RowOutcome, ...] = ()

    def as_dict(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "errors": self.errors,
            "skipped": self.skipped,
            "total": self.total,
        }


@dataclass(frozen=True)
class Timings:
    ms_open: int
    ms_exec: int
    ms_total: int

    def as_dict(self) -> dict[str, int]:
        return {"msOpen": self.ms_open, "msExec": self.ms_exec, "msTotal": self.ms_total}


@dataclass(frozen=True)
class RunSummary:
    ok: bool
    counts: Mapping[str, int]
    tables: Mapping[str, TableSummary]
    timings: Timings

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "counts": dict(self.counts),
            "tables": {name: result.as_dict() for name, result in self.tables.items()},
            "timings": self.timings.as_dict(),
        }


def _wanted(ret: ReturnSpec, outcome: RowOutcome) -> bool:
    if ret.mode == ReturnMode.INSERTED:
        return outcome.kind == OutcomeKind.INSERTED
    if ret.mode == ReturnMode.AFFECTED:
        return outcome.kind in (OutcomeKind.INSERTED, OutcomeKind.UPDATED)
    return False


class ResultAggregator:
    """
    Folds row outcomes into per-table results for one invocation.

    Outcomes are folded per transaction scope. Outcomes of a scope that
    committed count by kind; outcomes of a scope that rolled back only count
    towards ``total`` and ``errors``, since nothing they wrote persisted.
    """

    def __init__(self) -> None:
        self._tables: dict[str, GroupResult] = {}

    def register(self, table: str) -> GroupResult:
        return self._tables.setdefault(table, GroupResult())

    def skip_group(self, table: str, row_count: int) -> None:
        self.register(table).skipped += row_count

    def fold(
        self,
        table: str,
        ret: ReturnSpec,
        outcomes: Iterable[RowOutcome],
        committed: bool = True,
    ) -> list[RowOutcome]:
        """
        Count one scope's outcomes.

        Returns:
            The outcomes the group asked to have returned (none if the scope
            rolled back)
        """
        result = self.register(table)
        returned = []
        for outcome in outcomes:
            result.total += 1
            if not committed and outcome.kind != OutcomeKind.ERROR:
                continue
            counter = _COUNTER_FOR_KIND[outcome.kind]
            setattr(result, counter, getattr(result, counter) + 1)
            if committed and _wanted(ret, outcome):
                returned.append(outcome)
        result.returned.extend(returned)
        return returned

    def fail_scope(self, table: str) -> None:
        """Count a transaction scope that failed and was rolled back."""
        self.register(table).errors += 1

    def publish(
        self,
        table: str,
        ret: ReturnSpec,
        returned: Sequence[RowOutcome],
        context: InvocationContext,
    ) -> None:
        """Write one group's returned rows to its destination, replacing what is there."""
        if not ret.active or not returned:
            return
        context.store(
            ret.destination_type,
            ret.destination,
            [outcome.as_dict() for outcome in returned],
        )
        logger.debug(
            "Wrote %d returned rows for %s to %s:%s",
            len(returned), table, ret.destination_type.value, ret.destination,
        )

    def summary(self, timings: Timings) -> RunSummary:
        counts = {name: 0 for name in _COUNTERS}
        for result in self._tables.values():
            for name in _COUNTERS:
                counts[name] += getattr(result, name)
        return RunSummary(
            ok=counts["errors"] == 0,
            counts=MappingProxyType(counts),
            tables=MappingProxyType({name: result.freeze() for name, result in self._tables.items()}),
            timings=timings,
        )
