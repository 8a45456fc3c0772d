"""
SQL error parser - converts raw database errors to semantic error types.

This module is the ONLY place where we match against database-specific error
strings (MySQL and SQLite). Validation works with NormalizedError objects.
"""

import re

from loguru import logger

from bizsql.agents.sql.correction.error_types import NormalizedError, SQLErrorType


def normalize_error(error_message: str) -> NormalizedError:
    """
    Parse a raw database error message into a semantic error type.

    If no pattern matches, returns SQLErrorType.OTHER.

    Example:
        >>> normalize_error("no such column: p.Country").error_type
        <SQLErrorType.UNKNOWN_COLUMN: 'unknown_column'>
    """
    # GROUP BY violation (MySQL only_full_group_by mode)
    if _is_group_by_violation(error_message):
        return _parse_group_by_violation(error_message)

    # Duplicate table/alias
    if _is_duplicate_alias(error_message):
        return _parse_duplicate_alias(error_message)

    # Ambiguous column is checked before unknown column: SQLite's message
    # mentions "column name" too
    if _is_ambiguous_column(error_message):
        return _parse_ambiguous_column(error_message)

    if _is_unknown_column(error_message):
        return _parse_unknown_column(error_message)

    if _is_unknown_table(error_message):
        return _parse_unknown_table(error_message)

    if _is_syntax_error(error_message):
        return NormalizedError(
            error_type=SQLErrorType.SYNTAX_ERROR,
            raw_message=error_message,
            details={},
        )

    # Fallback: unrecognized error
    logger.debug(f"Could not normalize error, classifying as OTHER: {error_message[:100]}")
    return NormalizedError(
        error_type=SQLErrorType.OTHER,
        raw_message=error_message,
        details={},
    )


# ============================================================================
# Pattern Detection Functions
# ============================================================================

def _is_group_by_violation(error_message: str) -> bool:
    return (
        "Expression #" in error_message and
        ("GROUP BY" in error_message or "only_full_group_by" in error_message.lower())
    )


def _is_duplicate_alias(error_message: str) -> bool:
    return (
        "Not unique table/alias" in error_message or
        "1066" in error_message  # MySQL error code for duplicate alias
    )


def _is_unknown_column(error_message: str) -> bool:
    return (
        "Unknown column" in error_message or
        "no such column" in error_message or  # SQLite
        "1054" in error_message  # MySQL error code for unknown column
    )


def _is_unknown_table(error_message: str) -> bool:
    return (
        "Unknown table" in error_message or
        "no such table" in error_message or  # SQLite
        ("Table" in error_message and "doesn't exist" in error_message) or
        "1146" in error_message  # MySQL error code for unknown table
    )


def _is_ambiguous_column(error_message: str) -> bool:
    return (
        "ambiguous column name" in error_message.lower() or
        ("Column" in error_message and "is ambiguous" in error_message) or
        "1052" in error_message  # MySQL error code for ambiguous column
    )


def _is_syntax_error(error_message: str) -> bool:
    lowered = error_message.lower()
    return "syntax error" in lowered or "error in your sql syntax" in lowered or "1064" in error_message


# ============================================================================
# Error Parsing Functions
# ============================================================================

def _parse_group_by_violation(error_message: str) -> NormalizedError:
    """
    Example error:
    "Expression #2 of SELECT list is not in GROUP BY clause and contains
     nonaggregated column 'db.players.Username' which is not functionally
     dependent on columns in GROUP BY clause"
    """
    details = {}

    expr_match = re.search(r"Expression #(\d+)", error_message)
    if expr_match:
        details["expression_num"] = int(expr_match.group(1))

    column_match = re.search(r"column ['\"]([^'\"]+)['\"]", error_message)
    if column_match:
        details["column"] = column_match.group(1)

    logger.debug(f"Parsed GROUP_BY_VIOLATION: {details}")
    return NormalizedError(SQLErrorType.GROUP_BY_VIOLATION, error_message, details)


def _parse_duplicate_alias(error_message: str) -> NormalizedError:
    details = {}

    alias_match = re.search(r"table/alias[:\s]+['\"]([^'\"]+)['\"]", error_message, re.IGNORECASE)
    if alias_match:
        details["table"] = alias_match.group(1)

    logger.debug(f"Parsed DUPLICATE_ALIAS: {details}")
    return NormalizedError(SQLErrorType.DUPLICATE_ALIAS, error_message, details)


def _parse_unknown_column(error_message: str) -> NormalizedError:
    """
    Example errors:
    "Unknown column 'users.invalid_col' in 'field list'"
    "no such column: p.Country"
    """
    details = {}

    column_match = (
        re.search(r"column ['\"]([^'\"]+)['\"]", error_message, re.IGNORECASE) or
        re.search(r"no such column:\s*([\w.]+)", error_message)
    )
    if column_match:
        details["column"] = column_match.group(1)

    location_match = re.search(r"in ['\"]([^'\"]+)['\"]", error_message, re.IGNORECASE)
    if location_match:
        details["location"] = location_match.group(1)

    logger.debug(f"Parsed UNKNOWN_COLUMN: {details}")
    return NormalizedError(SQLErrorType.UNKNOWN_COLUMN, error_message, details)


def _parse_unknown_table(error_message: str) -> NormalizedError:
    """
    Example errors:
    "Table 'database.invalid_table' doesn't exist"
    "no such table: tbl_Sales"
    """
    details = {}

    table_match = (
        re.search(r"no such table:\s*([\w.]+)", error_message) or
        re.search(r"[Tt]able ['\"]([^'\"]+)['\"]", error_message)
    )
    if table_match:
        details["table"] = table_match.group(1)

    logger.debug(f"Parsed UNKNOWN_TABLE: {details}")
    return NormalizedError(SQLErrorType.UNKNOWN_TABLE, error_message, details)


def _parse_ambiguous_column(error_message: str) -> NormalizedError:
    """
    Example errors:
    "Column 'id' in field list is ambiguous"
    "ambiguous column name: PlayerID"
    """
    details = {}

    column_match = (
        re.search(r"[Cc]olumn ['\"]([^'\"]+)['\"]", error_message) or
        re.search(r"ambiguous column name:\s*([\w.]+)", error_message, re.IGNORECASE)
    )
    if column_match:
        details["column"] = column_match.group(1)

    logger.debug(f"Parsed AMBIGUOUS_COLUMN: {details}")
    return NormalizedError(SQLErrorType.AMBIGUOUS_COLUMN, error_message, details)
