from __future__ import annotations

import re
from typing import Iterable

from ..errors import ConfigurationError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that an identifier (table/column name) is safe for SQL interpolation.

    SQLite accepts far more than this once quoted, but identifiers are embedded
    unquoted, so we restrict to letters, digits and underscores, not starting
    with a digit.

    ⚠️ SECURITY CONTRACT ⚠️
    Only identifiers are ever interpolated into statement text. Values are
    always bound positionally at execution time.

    Args:
        name: The identifier to validate
        identifier_type: Description of the identifier (for error messages)

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        ConfigurationError: If the identifier is not a string or is not valid

    Example:
        >>> validate_identifier("orders", "table")
        'orders'
        >>> validate_identifier("'; DROP TABLE--", "table")
        ConfigurationError: Invalid table "'; DROP TABLE--": ...
    """
    if not isinstance(name, str):
        raise ConfigurationError(
            f"{identifier_type} must be a string, got {type(name).__name__}"
        )

    if not _IDENTIFIER_RE.match(name):
        raise ConfigurationError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    return name


def validate_identifiers(names: Iterable[str], identifier_type: str = "identifier") -> list[str]:
    """Validate every name, preserving order."""
    return [validate_identifier(name, identifier_type) for name in names]
