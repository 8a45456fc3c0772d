"""
Security layer.

Blocks anything that is not a single read-only SELECT, known injection
shapes, and string literals lifted verbatim from the question that linking
did not vet. Issues from this layer are never correctable.
"""

import re
from typing import List, Set

from loguru import logger
from sqlglot import exp
from sqlglot.errors import ParseError

from bizsql.agents.sql.models import ValidationIssue, ValidationLayer, ValidationResult
from bizsql.agents.sql.validation.base import ValidationContext
from bizsql.config.constants import FORBIDDEN_STATEMENT_KEYWORDS
from bizsql.sql.analysis.ast_utils import get_string_literals, is_read_only_query, parse_statements

LAYER = ValidationLayer.SECURITY

# (code, pattern, message); matched against SQL with literals masked
MASKED_PATTERNS = (
    ("forbidden_statement",
     re.compile(r"\b(" + "|".join(sorted(FORBIDDEN_STATEMENT_KEYWORDS)) + r")\b", re.IGNORECASE),
     "Destructive or write statement keyword '{0}'"),
    ("stacked_statements", re.compile(r";\s*\S"), "Multiple stacked statements"),
    ("sql_comment", re.compile(r"--|/\*|\*/|#"), "SQL comment sequence"),
    ("system_object",
     re.compile(r"\b(xp_\w+|sp_\w+|information_schema|mysql\.user|pg_catalog|sys\.\w+)\b", re.IGNORECASE),
     "System procedure or catalog access '{0}'"),
    ("time_delay", re.compile(r"\b(sleep|benchmark|pg_sleep)\s*\(|\bwaitfor\s+delay\b", re.IGNORECASE),
     "Time delay function"),
    ("file_access", re.compile(r"\binto\s+(outfile|dumpfile)\b|\bload_file\s*\(|\bload\s+data\b", re.IGNORECASE),
     "File read or write"),
)

# Matched against the raw SQL: tautologies need the literal values
TAUTOLOGY = re.compile(
    r"\bor\s+(?:(\d+)\s*=\s*\1\b|'([^']*)'\s*=\s*'\2'|true\b)",
    re.IGNORECASE,
)

_WRITE_NODES = (exp.Drop, exp.Delete, exp.Insert, exp.Update, exp.Create, exp.Alter, exp.Command)


def _issue(code: str, message: str) -> ValidationIssue:
    return ValidationIssue(layer=LAYER, code=code, message=message, correctable=False)


def _vetted_literals(ctx: ValidationContext) -> Set[str]:
    vetted = set()
    for entity in ctx.profile.entities:
        vetted.add(entity.name.lower())
        if entity.literal_value is not None:
            vetted.add(str(entity.literal_value).lower())
    time_context = ctx.profile.time_context
    if time_context is not None:
        vetted.add(time_context.start_date.isoformat())
        vetted.add(time_context.end_date.isoformat())
    return vetted


def _unvetted_question_literals(ctx: ValidationContext, literals: List[str]) -> List[str]:
    question = ctx.profile.raw_question.lower()
    vetted = _vetted_literals(ctx)
    flagged = []
    for literal in literals:
        value = literal.strip().lower()
        if len(value) < 2 or value in vetted:
            continue
        if re.search(r"(?<!\w)" + re.escape(value) + r"(?!\w)", question):
            flagged.append(literal)
    return flagged


async def validate_security(ctx: ValidationContext) -> ValidationResult:
    issues: List[ValidationIssue] = []
    masked = ctx.masked_sql

    for code, pattern, message in MASKED_PATTERNS:
        match = pattern.search(masked)
        if match:
            issues.append(_issue(code, message.format(match.group(0).strip())))

    if TAUTOLOGY.search(ctx.sql):
        issues.append(_issue("tautology", "Always-true condition (tautology)"))

    try:
        statements = parse_statements(ctx.sql, dialect=ctx.dialect)
    except ParseError:
        # Unparseable SQL is a correctable defect, reported by schema compliance
        statements = None

    if statements is not None:
        if len(statements) > 1 and not any(i.code == "stacked_statements" for i in issues):
            issues.append(_issue("stacked_statements", "Multiple stacked statements"))
        for statement in statements:
            if not is_read_only_query(statement) or statement.find(*_WRITE_NODES) is not None:
                issues.append(_issue("not_read_only", f"Statement type {type(statement).__name__} is not a read-only SELECT"))
                break
        if statements:
            for literal in _unvetted_question_literals(ctx, get_string_literals(statements[0])):
                issues.append(_issue("unvetted_literal", f"Literal '{literal}' is copied from the question without vetting"))

    if issues:
        logger.warning(f"Security layer blocked SQL: {[i.code for i in issues]}")
    return ValidationResult.from_issues(LAYER, issues)
