"""
Semantic alignment layer.

Checks that the SQL answers the question that was analyzed: intent shape
(one rule per intent), linked metrics and filter values, top-N ordering,
and date filtering that matches the resolved time context. When time was
not resolved, any date filter in the SQL is an invented range.
"""

import re
from datetime import date, timedelta
from typing import Callable, Dict, List

from loguru import logger

from bizsql.agents.sql.models import IssueSeverity, ValidationIssue, ValidationLayer, ValidationResult
from bizsql.agents.sql.validation.base import ValidationContext
from bizsql.domain.context.models import BusinessContextProfile, IntentType
from bizsql.domain.ontology.models import EntityType
from bizsql.sql.analysis.ast_utils import (
    get_column_references,
    get_date_literals,
    get_filter_literals,
    get_filtered_columns,
    get_group_by_expressions,
    get_limit,
    get_order_by,
    has_aggregate,
)

LAYER = ValidationLayer.SEMANTIC
AMBIGUOUS_TIME_CODE = "ambiguous_time"

RELATIVE_DATE_FUNCTIONS = re.compile(
    r"\b(curdate|current_date|current_timestamp|now|getdate|sysdate|date_sub|date_add|dateadd|interval)\b",
    re.IGNORECASE,
)


def _issue(code: str, message: str, severity: IssueSeverity = IssueSeverity.ERROR) -> ValidationIssue:
    return ValidationIssue(layer=LAYER, code=code, message=message, severity=severity)


# ----------------------------------------------------------------------
# Intent rules
# ----------------------------------------------------------------------

def _aggregation_rule(ctx: ValidationContext) -> List[ValidationIssue]:
    if has_aggregate(ctx.ast) or get_group_by_expressions(ctx.ast):
        return []
    return [_issue("missing_aggregation", "Aggregation question needs an aggregate function or GROUP BY")]


def _trend_rule(ctx: ValidationContext) -> List[ValidationIssue]:
    if get_group_by_expressions(ctx.ast):
        return []
    return [_issue("missing_time_grouping", "Trend question needs GROUP BY on a date or period")]


def _comparison_rule(ctx: ValidationContext) -> List[ValidationIssue]:
    if get_group_by_expressions(ctx.ast) or has_aggregate(ctx.ast):
        return []
    return [_issue(
        "missing_comparison",
        "Comparison question usually groups or aggregates the compared items",
        IssueSeverity.WARNING,
    )]


def _no_rule(ctx: ValidationContext) -> List[ValidationIssue]:
    return []


INTENT_RULES: Dict[IntentType, Callable[[ValidationContext], List[ValidationIssue]]] = {
    IntentType.AGGREGATION: _aggregation_rule,
    IntentType.TREND: _trend_rule,
    IntentType.COMPARISON: _comparison_rule,
    IntentType.DETAIL: _no_rule,
    IntentType.OPERATIONAL: _no_rule,
    IntentType.EXPLORATORY: _no_rule,
    IntentType.ANALYTICAL: _no_rule,
}


# ----------------------------------------------------------------------
# Entity, ranking and time checks
# ----------------------------------------------------------------------

def ambiguous_time_issue(profile: BusinessContextProfile) -> ValidationIssue:
    """Advisory attached whenever the question used unresolvable time language."""
    return _issue(
        AMBIGUOUS_TIME_CODE,
        f"Time expression '{profile.ambiguous_time_phrase}' is ambiguous; "
        f"results are not limited to a date range",
        IssueSeverity.WARNING,
    )


def _entity_issues(ctx: ValidationContext) -> List[ValidationIssue]:
    issues = []
    referenced = {column.lower() for _, column in get_column_references(ctx.ast)}
    filtered = get_filtered_columns(ctx.ast)
    filter_literals = get_filter_literals(ctx.ast)

    for entity in ctx.profile.mapped_entities:
        if not entity.mapped_column:
            continue
        column = entity.mapped_column
        if entity.entity_type == EntityType.METRIC and column.lower() not in referenced:
            issues.append(_issue(
                "metric_not_used",
                f"'{entity.name}' refers to {entity.mapped_table}.{column}, which the SQL does not use",
            ))
        elif entity.entity_type == EntityType.VALUE and entity.literal_value is not None:
            if column.lower() not in filtered or str(entity.literal_value).lower() not in filter_literals:
                issues.append(_issue(
                    "value_filter_missing",
                    f"'{entity.name}' must filter {entity.mapped_table}.{column} = '{entity.literal_value}'",
                ))
        elif entity.entity_type == EntityType.DIMENSION and column.lower() not in referenced:
            issues.append(_issue(
                "dimension_not_used",
                f"'{entity.name}' suggests using {entity.mapped_table}.{column}",
                IssueSeverity.WARNING,
            ))
    return issues


def _top_n_issues(ctx: ValidationContext) -> List[ValidationIssue]:
    top_n = ctx.profile.top_n
    if not top_n:
        return []
    issues = []
    order = get_order_by(ctx.ast)
    if not order:
        issues.append(_issue("missing_order_by", f"Top {top_n} question needs ORDER BY on the ranked measure"))
    elif not order[0][1]:
        issues.append(_issue("ascending_top_n", f"Top {top_n} usually orders descending", IssueSeverity.WARNING))
    if get_limit(ctx.ast) != top_n:
        issues.append(_issue("wrong_limit", f"Top {top_n} question needs LIMIT {top_n}"))
    return issues


def _time_issues(ctx: ValidationContext) -> List[ValidationIssue]:
    dates = get_date_literals(ctx.ast)
    relative = RELATIVE_DATE_FUNCTIONS.search(ctx.masked_sql)
    time_context = ctx.profile.time_context

    if time_context is None:
        issues = []
        if ctx.profile.time_ambiguous:
            issues.append(ambiguous_time_issue(ctx.profile))
        if dates or relative:
            issues.append(_issue(
                "invented_date_range",
                "The question does not state a date range; remove the date filter",
            ))
        return issues

    if relative and not dates:
        return [_issue(
            "relative_date_filter",
            f"Use the explicit dates {time_context.start_date.isoformat()} to "
            f"{time_context.end_date.isoformat()} instead of relative date functions",
        )]
    if not dates:
        return [_issue(
            "missing_date_filter",
            f"Filter the date column to {time_context.start_date.isoformat()} .. {time_context.end_date.isoformat()}",
        )]

    # An exclusive upper bound of end + 1 day is also correct
    upper = time_context.end_date + timedelta(days=1)
    issues = []
    parsed = []
    for literal in dates:
        try:
            parsed.append(date.fromisoformat(literal))
        except ValueError:
            issues.append(_issue("invalid_date", f"'{literal}' is not a valid date"))
    outside = [d for d in parsed if d < time_context.start_date or d > upper]
    if outside or (parsed and time_context.start_date not in parsed):
        issues.append(_issue(
            "date_range_mismatch",
            f"Date filter must cover {time_context.start_date.isoformat()} to "
            f"{time_context.end_date.isoformat()} ({time_context.relative_expression})",
        ))
    return issues


async def validate_semantics(ctx: ValidationContext) -> ValidationResult:
    issues: List[ValidationIssue] = []
    issues.extend(INTENT_RULES[ctx.profile.intent](ctx))
    issues.extend(_entity_issues(ctx))
    issues.extend(_top_n_issues(ctx))
    issues.extend(_time_issues(ctx))

    if issues:
        logger.info(f"Semantic layer: {[(i.code, i.severity.value) for i in issues]}")
    return ValidationResult.from_issues(LAYER, issues)
