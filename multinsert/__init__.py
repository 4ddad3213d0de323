from .config import (
    ColumnMapping,
    ConflictSpec,
    GroupConfig,
    MultiInsertConfig,
    ReturnSpec,
    TuningConfig,
    TxConfig,
)
from .context import InvocationContext, TypedResolver, ValueKind
from .orchestrator import MultiInsert
from .results import RunSummary

__all__ = [
    "ColumnMapping",
    "ConflictSpec",
    "GroupConfig",
    "InvocationContext",
    "MultiInsert",
    "MultiInsertConfig",
    "ReturnSpec",
    "RunSummary",
    "TuningConfig",
    "TxConfig",
    "TypedResolver",
    "ValueKind",
]
