from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..config import ConflictSpec, ConflictStrategy
from .helpers import validate_identifier, validate_identifiers

_HEAD_QUALIFIERS = {
    ConflictStrategy.IGNORE: "OR IGNORE ",
    ConflictStrategy.REPLACE: "OR REPLACE ",
}


@dataclass(frozen=True)
class Statement:
    """
    A compiled single-table INSERT.

    ``head + placeholders + tail`` is the statement text; values are always
    bound positionally at execution time.
    """
    head: str
    placeholders: str
    tail: str = ""

    def sql(self, returning: bool = False) -> str:
        text = f"{self.head}{self.placeholders}{self.tail}"
        if returning:
            text += " RETURNING *"
        return text


def build_statement(
    table: str,
    columns: Sequence[str],
    conflict: ConflictSpec,
) -> Statement:
    """
    Build the INSERT for ``table`` over ``columns`` under ``conflict``.

    Example:
        >>> build_statement("t", ["a", "b"], ConflictSpec())
        Statement(head='INSERT INTO t (a,b) VALUES ', placeholders='(?,?)', tail='')

    Raises:
        ConfigurationError: If any identifier is invalid
    """
    tbl = validate_identifier(table, "table")
    cols = validate_identifiers(columns, "column")

    head = "INSERT " + _HEAD_QUALIFIERS.get(conflict.strategy, "")
    head += f"INTO {tbl} ({','.join(cols)}) VALUES "
    placeholders = "(" + ",".join("?" for _ in cols) + ")"

    tail = ""
    if conflict.strategy == ConflictStrategy.UPSERT:
        keys = validate_identifiers(conflict.keys, "conflict key")
        update_cols = validate_identifiers(conflict.update_cols, "update column")
        sets = ", ".join(f"{c}=excluded.{c}" for c in update_cols)
        tail = f" ON CONFLICT({','.join(keys)}) DO UPDATE SET {sets}"

    return Statement(head=head, placeholders=placeholders, tail=tail)


def build_exists_query(table: str, keys: Sequence[str]) -> str:
    """SELECT probing whether a row with the given key values already exists."""
    tbl = validate_identifier(table, "table")
    where = " AND ".join(f"{k} = ?" for k in validate_identifiers(keys, "conflict key"))
    return f"SELECT 1 FROM {tbl} WHERE {where} LIMIT 1"


@dataclass(frozen=True)
class InsertPlan:
    """Everything needed to write one group's rows."""
    table: str
    columns: tuple[str, ...]
    statement: Statement
    conflict: ConflictSpec = field(default_factory=ConflictSpec)
    exists_sql: str | None = None

    @classmethod
    def compile(cls, table: str, columns: Sequence[str], conflict: ConflictSpec) -> "InsertPlan":
        exists_sql = None
        if conflict.strategy == ConflictStrategy.UPSERT:
            exists_sql = build_exists_query(table, conflict.keys)
        return cls(
            table=table,
            columns=tuple(columns),
            statement=build_statement(table, columns, conflict),
            conflict=conflict,
            exists_sql=exists_sql,
        )

    def bind(self, row: Mapping[str, Any]) -> tuple[Any, ...]:
        """Positional values in column order; absent columns bind NULL."""
        return tuple(row.get(c) for c in self.columns)

    def key_values(self, row: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(row.get(k) for k in self.conflict.keys)
