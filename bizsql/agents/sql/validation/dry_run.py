"""
Dry-run layer - EXPLAIN the SQL in the sandbox.

Engine rejections are normalized into semantic error types so the
correction prompt gets a stable message. Sandbox transport failures are
not the model's fault and are reported as non-correctable.
"""

from loguru import logger

from bizsql.agents.sql.correction import normalize_error
from bizsql.agents.sql.models import IssueSeverity, ValidationIssue, ValidationLayer, ValidationResult
from bizsql.agents.sql.validation.base import ValidationContext
from bizsql.utils.errors import DryRunError

LAYER = ValidationLayer.DRY_RUN


async def validate_dry_run(ctx: ValidationContext) -> ValidationResult:
    if ctx.sandbox is None:
        return ValidationResult.from_issues(LAYER, [ValidationIssue(
            layer=LAYER,
            code="dry_run_skipped",
            message="No dry-run sandbox configured; query plan not checked",
            severity=IssueSeverity.WARNING,
        )])

    try:
        result = await ctx.sandbox.explain(ctx.sql, timeout=ctx.dry_run_timeout, token=ctx.token)
    except DryRunError as e:
        logger.error(f"❌ Dry run unavailable: {e}")
        return ValidationResult.from_issues(LAYER, [ValidationIssue(
            layer=LAYER,
            code="sandbox_unavailable",
            message=f"Dry run could not be performed: {e.message}",
            correctable=False,
        )])

    if result.syntax_error:
        normalized = normalize_error(result.syntax_error)
        logger.info(f"Dry run rejected SQL: {normalized}")
        return ValidationResult.from_issues(LAYER, [ValidationIssue(
            layer=LAYER,
            code=normalized.error_type.value,
            message=normalized.describe(),
        )])

    if result.estimated_rows is not None and result.estimated_rows > ctx.dry_run_max_rows:
        return ValidationResult.from_issues(LAYER, [ValidationIssue(
            layer=LAYER,
            code="result_too_large",
            message=f"Query would scan about {result.estimated_rows:,} rows (limit {ctx.dry_run_max_rows:,}); "
                    f"add filters or aggregate",
        )])

    logger.debug(f"Dry run OK (rows={result.estimated_rows}, cost={result.estimated_cost})")
    return ValidationResult.from_issues(LAYER, [])
