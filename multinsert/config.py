from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from .context import (
    DB_TARGET_KINDS,
    DESTINATION_KINDS,
    MAPPING_KINDS,
    SOURCE_KINDS,
    ValueKind,
    parse_kind,
)
from .db.helpers import validate_identifier, validate_identifiers
from .errors import ConfigurationError


class Transform(str, Enum):
    NONE = "none"
    TRIM = "trim"
    UPPER = "upper"
    LOWER = "lower"
    NZ = "nz"
    BOOL01 = "bool01"
    NUMBER = "number"
    STRING = "string"


class ConflictStrategy(str, Enum):
    NONE = "none"
    IGNORE = "ignore"
    REPLACE = "replace"
    UPSERT = "upsert"


class ReturnMode(str, Enum):
    NONE = "none"
    INSERTED = "inserted"
    AFFECTED = "affected"


class TxMode(str, Enum):
    ALL = "all"
    PER_TABLE = "perTable"
    CHUNK = "chunk"
    OFF = "off"


def _enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(repr(member.value) for member in enum_cls)
        raise ConfigurationError(f"Invalid {what} {value!r}; expected one of {allowed}") from None


@dataclass
class ColumnMapping:
    """One target column and how its value is derived from a source row."""
    column: str
    source: Any = None
    source_type: ValueKind = ValueKind.PATH
    transform: Transform = Transform.NONE

    def __post_init__(self) -> None:
        self.column = validate_identifier(self.column, "mapping column")
        self.source_type = parse_kind(self.source_type, MAPPING_KINDS, "mapping source")
        self.transform = _enum(Transform, self.transform, "transform")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ColumnMapping":
        return cls(
            column=data.get("column"),
            source=data.get("src"),
            source_type=data.get("srcType") or ValueKind.PATH,
            transform=data.get("transform") or Transform.NONE,
        )


@dataclass
class ConflictSpec:
    strategy: ConflictStrategy = ConflictStrategy.NONE
    keys: list[str] = field(default_factory=list)
    update_cols: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.strategy = _enum(ConflictStrategy, self.strategy, "conflict strategy")
        self.keys = validate_identifiers(self.keys or [], "conflict key")
        self.update_cols = validate_identifiers(self.update_cols or [], "update column")

        if self.strategy == ConflictStrategy.UPSERT:
            if not self.keys:
                raise ConfigurationError("UPSERT requires conflict keys")
            if not self.update_cols:
                raise ConfigurationError("UPSERT requires update columns")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ConflictSpec":
        data = data or {}
        return cls(
            strategy=data.get("strategy") or ConflictStrategy.NONE,
            keys=list(data.get("keys") or []),
            update_cols=list(data.get("updateCols") or []),
        )


@dataclass
class ReturnSpec:
    mode: ReturnMode = ReturnMode.NONE
    id_column: str = "id"
    destination_type: ValueKind = ValueKind.MSG
    # None means "sqlite.<table>.rows", filled in by GroupConfig
    destination: Optional[str] = None

    def __post_init__(self) -> None:
        self.mode = _enum(ReturnMode, self.mode, "return mode")
        self.destination_type = parse_kind(
            self.destination_type, DESTINATION_KINDS, "return destination"
        )
        if not isinstance(self.id_column, str) or not self.id_column:
            raise ConfigurationError("Return id column must be a non-empty string")

    @property
    def active(self) -> bool:
        return self.mode != ReturnMode.NONE

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ReturnSpec":
        data = data or {}
        return cls(
            mode=data.get("mode") or ReturnMode.NONE,
            id_column=data.get("idCol") or "id",
            destination_type=data.get("pathType") or ValueKind.MSG,
            destination=data.get("path") or None,
        )


@dataclass
class GroupConfig:
    """One target table's write job."""
    table: str
    source: Any = "payload"
    source_type: ValueKind = ValueKind.MSG
    auto_map: bool = False
    mappings: list[ColumnMapping] = field(default_factory=list)
    conflict: ConflictSpec = field(default_factory=ConflictSpec)
    ret: ReturnSpec = field(default_factory=ReturnSpec)

    def __post_init__(self) -> None:
        self.table = validate_identifier(self.table, "table")
        self.source_type = parse_kind(self.source_type, SOURCE_KINDS, "group source")
        if self.ret.destination is None:
            self.ret.destination = f"sqlite.{self.table}.rows"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GroupConfig":
        return cls(
            table=data.get("table"),
            source=data.get("source", "payload"),
            source_type=data.get("sourceType") or ValueKind.MSG,
            auto_map=bool(data.get("autoMap")),
            mappings=[ColumnMapping.from_dict(m) for m in data.get("mapping") or []],
            conflict=ConflictSpec.from_dict(data.get("conflict")),
            ret=ReturnSpec.from_dict(data.get("ret")),
        )


@dataclass
class TxConfig:
    mode: TxMode = TxMode.ALL
    chunk_size: int = 500
    continue_on_error: bool = False

    def __post_init__(self) -> None:
        self.mode = _enum(TxMode, self.mode, "transaction mode")
        try:
            self.chunk_size = max(1, int(self.chunk_size))
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid chunk size {self.chunk_size!r}") from None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TxConfig":
        data = data or {}
        return cls(
            mode=data.get("mode") or TxMode.ALL,
            chunk_size=data.get("chunkSize") or 500,
            continue_on_error=bool(data.get("continueOnError")),
        )


@dataclass
class TuningConfig:
    """SQLite PRAGMA directives applied before any group executes."""
    wal: bool = False
    sync: str = ""
    extra: str = ""

    def directives(self) -> list[str]:
        statements = []
        if self.wal:
            statements.append("PRAGMA journal_mode=WAL")
        if self.sync:
            statements.append(f"PRAGMA synchronous={self.sync}")
        if self.extra:
            for piece in str(self.extra).split(";"):
                piece = piece.strip()
                if piece:
                    statements.append(f"PRAGMA {piece}")
        return statements

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TuningConfig":
        data = data or {}
        return cls(
            wal=bool(data.get("wal")),
            sync=str(data.get("sync") or ""),
            extra=str(data.get("extra") or ""),
        )


@dataclass
class MultiInsertConfig:
    db_path: Any
    db_path_type: ValueKind = ValueKind.STR
    tuning: TuningConfig = field(default_factory=TuningConfig)
    tx: TxConfig = field(default_factory=TxConfig)
    groups: list[GroupConfig] = field(default_factory=list)
    emit_payload_summary: bool = False
    summary_path: str = "sqlite"

    def __post_init__(self) -> None:
        self.db_path_type = parse_kind(self.db_path_type, DB_TARGET_KINDS, "database path")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MultiInsertConfig":
        """Build from the camelCase node configuration."""
        return cls(
            db_path=data.get("dbPath") or "",
            db_path_type=data.get("dbPathType") or ValueKind.STR,
            tuning=TuningConfig.from_dict(data.get("pragmas")),
            tx=TxConfig.from_dict(data.get("tx")),
            groups=[GroupConfig.from_dict(g) for g in data.get("groups") or []],
            emit_payload_summary=bool(data.get("emitPayloadSummary")),
        )
