from .helpers import validate_identifier
from .session import DbSession, engine_for
from .tx import TransactionScope

# statement/executor depend on ..config and are imported from their modules
__all__ = [
    "DbSession",
    "TransactionScope",
    "engine_for",
    "validate_identifier",
]
