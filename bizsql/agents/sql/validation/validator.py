"""
Multi-layer SQL validator.

Runs the layers in a fixed order and stops at the first layer that fails,
so later layers never see SQL an earlier layer rejected (the dry run never
receives SQL that failed security).
"""

from typing import Awaitable, Callable, Dict, List

from loguru import logger
from sqlglot.errors import ParseError

from bizsql.agents.sql.models import LAYER_ORDER, ValidationLayer, ValidationResult
from bizsql.agents.sql.validation.base import ValidationContext
from bizsql.agents.sql.validation.business import validate_business_logic
from bizsql.agents.sql.validation.dry_run import validate_dry_run
from bizsql.agents.sql.validation.schema import validate_schema_compliance
from bizsql.agents.sql.validation.security import validate_security
from bizsql.agents.sql.validation.semantic import validate_semantics
from bizsql.sql.analysis.ast_utils import parse_sql

LayerFn = Callable[[ValidationContext], Awaitable[ValidationResult]]

LAYERS: Dict[ValidationLayer, LayerFn] = {
    ValidationLayer.SECURITY: validate_security,
    ValidationLayer.SCHEMA_COMPLIANCE: validate_schema_compliance,
    ValidationLayer.SEMANTIC: validate_semantics,
    ValidationLayer.BUSINESS_LOGIC: validate_business_logic,
    ValidationLayer.DRY_RUN: validate_dry_run,
}


async def validate_sql(ctx: ValidationContext) -> List[ValidationResult]:
    """
    Validate ``ctx.sql`` layer by layer.

    Returns:
        Results for every layer that ran, in order. The list is shorter
        than ``LAYER_ORDER`` when a layer failed.

    Raises:
        PipelineCancelled: the token fired between or during layers
    """
    results: List[ValidationResult] = []
    for layer in LAYER_ORDER:
        if ctx.token is not None:
            ctx.token.raise_if_cancelled(stage="validation")

        if layer is not ValidationLayer.SECURITY and ctx.ast is None:
            try:
                ctx.ast = parse_sql(ctx.sql, dialect=ctx.dialect)
            except ParseError:
                # Schema compliance reports the parse error as an issue
                pass

        result = await LAYERS[layer](ctx)
        results.append(result)
        logger.debug(f"Layer {layer.value}: passed={result.passed} score={result.score:.2f}")
        if not result.passed:
            logger.info(f"Validation stopped at {layer.value}: {[i.code for i in result.errors]}")
            break
    return results
