class MultiInsertError(Exception):
    """Base exception for multinsert errors."""


class ConfigurationError(MultiInsertError):
    """Invalid configuration. Always fatal, raised before any write begins."""


class ResolutionError(MultiInsertError):
    """A typed source or mapping value could not be resolved."""


class TransformError(ResolutionError):
    """A mapped value could not be coerced by its transform."""


class ExecutionError(MultiInsertError):
    """A row write failed and continue-on-error is disabled."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class TransactionError(MultiInsertError):
    """BEGIN or COMMIT failed for a transaction scope."""
