from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .config import GroupConfig, Transform
from .context import Resolver, stringify, to_number

_NA_RE = re.compile(r"^N/?A$", re.IGNORECASE)


def _nz(value: Any) -> Any:
    text = stringify(value).strip()
    if not text or _NA_RE.match(text):
        return None
    return text


def _bool01(value: Any) -> int:
    if value is True:
        return 1
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 1:
        return 1
    if isinstance(value, str) and (value == "1" or value.lower() == "true"):
        return 1
    return 0


_TRANSFORMS: dict[Transform, Callable[[Any], Any]] = {
    Transform.NONE: lambda v: v,
    Transform.TRIM: lambda v: stringify(v).strip(),
    Transform.UPPER: lambda v: stringify(v).upper(),
    Transform.LOWER: lambda v: stringify(v).lower(),
    Transform.NZ: _nz,
    Transform.BOOL01: _bool01,
    Transform.NUMBER: to_number,
    Transform.STRING: stringify,
}


def apply_transform(value: Any, transform: Transform | str) -> Any:
    """
    Apply a column transform. None always maps to None.

    Raises:
        TransformError: ``number`` on a non-numeric value
    """
    if value is None:
        return None
    return _TRANSFORMS[Transform(transform)](value)


def to_rows(raw: Any) -> list[Any]:
    """A list is a list of rows, a dict is one row, anything else is no rows."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, Mapping):
        return [raw]
    return []


@dataclass
class MappedRows:
    rows: list[dict[str, Any]]
    columns: list[str]


class RowMapper:
    """
    Turns a raw source value into column-keyed rows for one group.

    Auto-map copies object rows verbatim and takes the union of their keys as
    the column set. Explicit mappings resolve each column per source row and
    use the mapping columns, in configuration order.
    """

    def __init__(self, resolver: Resolver) -> None:
        self.resolver = resolver

    def map(self, raw: Any, group: GroupConfig) -> MappedRows:
        source_rows = to_rows(raw)
        if group.auto_map:
            return self._auto_map(source_rows)
        return self._explicit_map(source_rows, group)

    def _auto_map(self, source_rows: list[Any]) -> MappedRows:
        rows = [dict(r) if isinstance(r, Mapping) else {} for r in source_rows]
        # dict preserves first-seen order
        seen: dict[str, None] = {}
        for row in rows:
            for key in row:
                seen.setdefault(key, None)
        return MappedRows(rows=rows, columns=list(seen))

    def _explicit_map(self, source_rows: list[Any], group: GroupConfig) -> MappedRows:
        rows = []
        for source_row in source_rows:
            out: dict[str, Any] = {}
            for mapping in group.mappings:
                value = self.resolver.resolve(mapping.source_type, mapping.source, source_row)
                out[mapping.column] = apply_transform(value, mapping.transform)
            rows.append(out)

        columns = list(dict.fromkeys(m.column for m in group.mappings))
        return MappedRows(rows=rows, columns=columns)
