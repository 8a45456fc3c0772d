"""
Business logic layer.

Applies the declared business rules for every table the SQL touches:
required filters (e.g. exclude test accounts) and forbidden columns.
"""

from typing import Dict, List, Optional

from loguru import logger
from sqlglot import exp

from bizsql.agents.sql.models import ValidationIssue, ValidationLayer, ValidationResult
from bizsql.agents.sql.validation.base import ValidationContext
from bizsql.domain.ontology.models import BusinessRule, RuleType
from bizsql.sql.analysis.ast_utils import get_column_references, get_table_references

LAYER = ValidationLayer.BUSINESS_LOGIC


def _column_belongs(column: exp.Column, rule: BusinessRule, references: Dict[str, str]) -> bool:
    if column.name.lower() != rule.column.lower():
        return False
    qualifier = column.table
    if not qualifier:
        return True
    table = references.get(qualifier.lower())
    return table is not None and table.lower() == rule.table.lower()


def _literal_matches(node: exp.Expression, value) -> bool:
    if isinstance(node, exp.Paren):
        node = node.this
    if isinstance(node, exp.Boolean):
        return str(int(node.this)) == str(value) or str(node.this).lower() == str(value).lower()
    if isinstance(node, exp.Literal):
        return str(node.this) == str(value)
    return False


def _has_required_filter(ast: exp.Expression, rule: BusinessRule, references: Dict[str, str]) -> bool:
    for where in ast.find_all(exp.Where):
        for eq in where.find_all(exp.EQ):
            left, right = eq.this, eq.expression
            for column, literal in ((left, right), (right, left)):
                if isinstance(column, exp.Column) and _column_belongs(column, rule, references):
                    if _literal_matches(literal, rule.value):
                        return True
    return False


def _uses_column(ast: exp.Expression, rule: BusinessRule, references: Dict[str, str]) -> bool:
    return any(_column_belongs(column, rule, references) for column in ast.find_all(exp.Column))


def _check_rule(ctx: ValidationContext, rule: BusinessRule, references: Dict[str, str]) -> Optional[ValidationIssue]:
    if rule.rule_type == RuleType.REQUIRED_FILTER:
        if _has_required_filter(ctx.ast, rule, references):
            return None
        return ValidationIssue(
            layer=LAYER,
            code="required_filter_missing",
            message=f"Rule '{rule.name}': add WHERE {rule.table}.{rule.column} = {rule.value!r}"
                    + (f" ({rule.description})" if rule.description else ""),
        )

    if rule.rule_type == RuleType.FORBIDDEN_COLUMN:
        if not _uses_column(ctx.ast, rule, references):
            return None
        return ValidationIssue(
            layer=LAYER,
            code="forbidden_column",
            message=f"Rule '{rule.name}': column {rule.table}.{rule.column} must not be used"
                    + (f" ({rule.description})" if rule.description else ""),
        )

    logger.warning(f"Unknown business rule type {rule.rule_type} for rule '{rule.name}'")
    return None


async def validate_business_logic(ctx: ValidationContext) -> ValidationResult:
    references = get_table_references(ctx.ast)
    touched = {name.lower() for name in references.values()}
    issues: List[ValidationIssue] = []

    for rule in ctx.business_rules:
        if rule.table.lower() not in touched:
            continue
        issue = _check_rule(ctx, rule, references)
        if issue is not None:
            issues.append(issue)

    if issues:
        logger.info(f"Business rules violated: {[i.code for i in issues]}")
    else:
        logger.debug(f"Business rules OK ({len(ctx.business_rules)} checked, {len(get_column_references(ctx.ast))} column refs)")
    return ValidationResult.from_issues(LAYER, issues)
