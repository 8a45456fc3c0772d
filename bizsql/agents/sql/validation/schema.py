"""
Schema compliance layer.

Every physical table and column in the SQL must be part of the schema
selection the prompt was built from. Aliases, CTEs, derived tables and
projection aliases are resolved before checking. A miss is treated as a
hallucination and is correctable.
"""

from typing import List

from loguru import logger
from sqlglot.errors import ParseError

from bizsql.agents.sql.models import ValidationIssue, ValidationLayer, ValidationResult
from bizsql.agents.sql.validation.base import ValidationContext
from bizsql.sql.analysis.ast_utils import (
    get_column_references,
    get_derived_aliases,
    get_projection_aliases,
    get_table_references,
    parse_sql,
)

LAYER = ValidationLayer.SCHEMA_COMPLIANCE


def _issue(code: str, message: str) -> ValidationIssue:
    return ValidationIssue(layer=LAYER, code=code, message=message)


async def validate_schema_compliance(ctx: ValidationContext) -> ValidationResult:
    if ctx.ast is None:
        try:
            ctx.ast = parse_sql(ctx.sql, dialect=ctx.dialect)
        except ParseError as e:
            return ValidationResult.from_issues(LAYER, [_issue("parse_error", f"SQL could not be parsed: {e}")])

    selection = ctx.selection
    allowed = ", ".join(selection.table_names)
    issues: List[ValidationIssue] = []

    references = get_table_references(ctx.ast)
    derived = get_derived_aliases(ctx.ast)
    projection_aliases = get_projection_aliases(ctx.ast)

    unknown_tables = set()
    for name in sorted(set(references.values()), key=str.lower):
        if not selection.has_table(name):
            unknown_tables.add(name.lower())
            issues.append(_issue(
                "unknown_table",
                f"Table '{name}' is not in the selected schema. Use only: {allowed}",
            ))

    referenced_selected = [t for t in set(references.values()) if selection.has_table(t)]

    seen = set()
    for qualifier, column in get_column_references(ctx.ast):
        key = ((qualifier or "").lower(), column.lower())
        if key in seen:
            continue
        seen.add(key)

        if qualifier:
            q = qualifier.lower()
            if q in derived:
                continue
            table = references.get(q)
            if table is None:
                issues.append(_issue("unknown_alias", f"'{qualifier}.{column}' uses an undefined table alias '{qualifier}'"))
                continue
            if table.lower() in unknown_tables:
                continue
            if not selection.has_column(table, column):
                issues.append(_issue(
                    "unknown_column",
                    f"Column '{column}' is not available on table '{table}' in the selected schema",
                ))
            continue

        if column.lower() in projection_aliases:
            continue
        if any(selection.has_column(t, column) for t in referenced_selected):
            continue
        if derived:
            # May come from a CTE or subquery output
            continue
        issues.append(_issue(
            "unknown_column",
            f"Column '{column}' does not exist on any referenced table in the selected schema",
        ))

    if issues:
        logger.info(f"Schema compliance found {len(issues)} issue(s): {[i.message for i in issues]}")
    return ValidationResult.from_issues(LAYER, issues)
