"""
SQL validation node
"""

import dataclasses

from loguru import logger

from bizsql.agents.sql.context import SQLContext
from bizsql.agents.sql.models import AttemptStatus, OverallResult
from bizsql.agents.sql.state import SQLGraphState
from bizsql.agents.sql.utils import trace_step
from bizsql.agents.sql.validation import ValidationContext, validate_sql


@trace_step("validate_sql")
async def validate_sql_node(state: SQLGraphState, ctx: SQLContext) -> SQLGraphState:
    """Run every validation layer against the current attempt."""
    regenerated = state.get("status") == AttemptStatus.REGENERATED.value
    state["status"] = AttemptStatus.VALIDATING.value
    validation_ctx = ValidationContext(
        sql=state["sql"],
        profile=state["profile"],
        selection=state["selection"],
        business_rules=ctx.business_rules,
        sandbox=ctx.sandbox,
        dialect=ctx.dialect,
        dry_run_timeout=ctx.dry_run_timeout,
        dry_run_max_rows=ctx.dry_run_max_rows,
        token=ctx.token,
    )
    results = await validate_sql(validation_ctx)
    overall = OverallResult(tuple(results))

    corrections = list(state.get("corrections") or [])
    if regenerated and corrections:
        # Score the correction that produced this attempt
        prior_score = state.get("score", 0.0)
        corrections[-1] = dataclasses.replace(
            corrections[-1],
            improvement_score=round(overall.score - prior_score, 4),
        )
        state["corrections"] = corrections

    state["validation_results"] = results
    state["score"] = overall.score
    state["status"] = (AttemptStatus.VALID if overall.valid else AttemptStatus.INVALID).value

    if overall.valid:
        logger.info(f"✅ Attempt {state['attempt']} passed all layers (score={overall.score:.2f})")
    else:
        logger.warning(
            f"⚠️ Attempt {state['attempt']} invalid (score={overall.score:.2f}): "
            f"{[i.message for i in overall.blocking_issues]}"
        )
    return state
