from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class OutcomeKind(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


class RowAction(str, Enum):
    # returning path
    AFFECTED = "affected"
    # fallback path (last inserted rowid only)
    INSERTED = "inserted"


@dataclass(frozen=True)
class RowOutcome:
    """
    Result of writing a single mapped row.
    """
    kind: OutcomeKind
    data: Mapping[str, Any]
    action: Optional[RowAction] = None
    id: Any = None
    error: Optional[BaseException] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value if self.action is not None else None,
            "id": self.id,
            "data": dict(self.data),
        }
