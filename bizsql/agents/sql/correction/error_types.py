"""
SQL error type definitions for semantic error classification.

Instead of matching raw database error strings throughout the codebase,
dry-run failures are normalized into semantic types that are:
- Database-agnostic
- Version-independent
- Easy to test and extend
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class SQLErrorType(Enum):
    """
    Semantic SQL error types.

    These represent the *meaning* of an error, not the specific database message.
    """
    # Column/table reference errors
    UNKNOWN_COLUMN = "unknown_column"
    UNKNOWN_TABLE = "unknown_table"
    AMBIGUOUS_COLUMN = "ambiguous_column"

    # Join errors
    DUPLICATE_ALIAS = "duplicate_alias"

    # GROUP BY errors
    GROUP_BY_VIOLATION = "group_by_violation"

    # Syntax errors
    SYNTAX_ERROR = "syntax_error"

    # Catch-all for unrecognized errors
    OTHER = "other"


@dataclass
class NormalizedError:
    """
    Normalized representation of a SQL error.

    Attributes:
        error_type: Semantic error type (from SQLErrorType enum)
        raw_message: Original error message from the database
        details: Structured error details (e.g., {"column": "players.Country"})
    """
    error_type: SQLErrorType
    raw_message: str
    details: Dict[str, Any]

    def __post_init__(self):
        if not isinstance(self.error_type, SQLErrorType):
            raise TypeError(f"error_type must be SQLErrorType, got {type(self.error_type)}")

    def get_detail(self, key: str, default: Any = None) -> Any:
        return self.details.get(key, default)

    def describe(self) -> str:
        """One-line message suitable for a correction prompt."""
        if self.error_type == SQLErrorType.UNKNOWN_COLUMN and "column" in self.details:
            return f"Unknown column '{self.details['column']}'"
        if self.error_type == SQLErrorType.UNKNOWN_TABLE and "table" in self.details:
            return f"Unknown table '{self.details['table']}'"
        if self.error_type == SQLErrorType.AMBIGUOUS_COLUMN and "column" in self.details:
            return f"Ambiguous column '{self.details['column']}': qualify it with a table alias"
        if self.error_type == SQLErrorType.GROUP_BY_VIOLATION:
            column = self.details.get("column", "a selected column")
            return f"{column} is selected but neither aggregated nor in GROUP BY"
        if self.error_type == SQLErrorType.DUPLICATE_ALIAS and "table" in self.details:
            return f"Table or alias '{self.details['table']}' is used twice"
        return self.raw_message

    def __str__(self) -> str:
        return f"NormalizedError(type={self.error_type.value}, details={self.details})"
