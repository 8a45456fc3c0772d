"""
Application constants

Centralized constants used across the pipeline.
"""

from typing import FrozenSet

# ============================================================================
# Question analysis
# ============================================================================

# Tokens that carry no business meaning on their own
STOPWORDS: FrozenSet[str] = frozenset({
    "a", "an", "the", "of", "and", "or", "to", "me", "show", "give", "list",
    "what", "which", "who", "how", "many", "much", "is", "are", "was", "were",
    "with", "on", "at", "all", "my", "our", "please", "get", "find", "their",
    "that", "this", "these", "those", "be", "do", "does", "did", "it", "its",
})

# Preceding tokens that mark the next phrase as a filter value ("from UK")
FILTER_PREPOSITIONS: FrozenSet[str] = frozenset({"from", "in", "for", "where", "within", "at"})

# Preceding tokens that mark the next phrase as a grouping dimension ("by country")
GROUPING_PREPOSITIONS: FrozenSet[str] = frozenset({"by", "per", "each", "across"})

# Vague temporal language that must never be turned into a guessed date range
AMBIGUOUS_TIME_WORDS: FrozenSet[str] = frozenset({
    "recent", "recently", "lately", "latest", "nowadays", "past", "a while",
    "some time", "earlier", "previously",
})

MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}

# ============================================================================
# SQL Constants
# ============================================================================

# Statement types a read-only analytical query may never contain
FORBIDDEN_STATEMENT_KEYWORDS: FrozenSet[str] = frozenset({
    "DROP", "DELETE", "TRUNCATE", "ALTER", "CREATE", "INSERT", "UPDATE",
    "MERGE", "GRANT", "REVOKE", "RENAME", "EXEC", "EXECUTE",
})

AGGREGATE_FUNCTIONS: FrozenSet[str] = frozenset({
    "SUM", "COUNT", "AVG", "MIN", "MAX", "STDDEV", "VARIANCE", "GROUP_CONCAT",
})

# Name of the fallback domain when no configured domain clears the threshold
GENERAL_DOMAIN = "General"
