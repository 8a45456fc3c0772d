"""
Prompt templates for SQL generation and correction.
"""

from typing import List, Sequence

GENERATION_INSTRUCTIONS = """You are a SQL analyst for a {dialect} database.

RULES:
1. Output ONE read-only SELECT statement and nothing else (no prose, no comments).
2. Use ONLY the tables and columns listed under SCHEMA. Never invent names.
3. Join tables only through the relationships listed under RELATIONSHIPS.
4. Use the literal values given for business entities exactly as written.
5. Apply the date range under BUSINESS CONTEXT when one is given. If no date range is given, do not add a date filter.
6. Aggregations must GROUP BY every non-aggregated selected column.
7. "Top N" questions need ORDER BY on the ranked measure and LIMIT N."""

CORRECTION_HEADER = """The previous SQL failed validation. Rewrite it so that every issue below is fixed.
Keep to the same rules and the same context. Output only the corrected SQL."""


def section(title: str, body: str) -> str:
    return f"### {title}\n{body}"


def render_numbered_issues(messages: Sequence[str]) -> str:
    return "\n".join(f"{i}. {message}" for i, message in enumerate(messages, start=1))


def render_correction_history(history: List[dict]) -> str:
    """``history`` items carry ``attempt``, ``sql`` and ``issues`` (list of messages)."""
    blocks = []
    for item in history:
        issues = "; ".join(item["issues"]) or "none"
        blocks.append(f"Attempt {item['attempt']}:\n{item['sql']}\nIssues: {issues}")
    return "\n\n".join(blocks)
