"""
SQL finalize node - settles the terminal state
"""

from loguru import logger

from bizsql.agents.sql.context import SQLContext
from bizsql.agents.sql.models import AttemptStatus, OverallResult
from bizsql.agents.sql.state import SQLGraphState
from bizsql.agents.sql.utils import trace_step


@trace_step("finalize")
async def finalize_node(state: SQLGraphState, ctx: SQLContext) -> SQLGraphState:
    """
    Valid attempts stay Valid. Anything else becomes Failed with the last
    SQL and its issues kept for the caller; invalid SQL is never passed on
    as if it were valid.
    """
    overall = OverallResult(tuple(state.get("validation_results") or ()))
    if overall.valid:
        state["status"] = AttemptStatus.VALID.value
        state["failure_reason"] = None
        return state

    blocking = overall.blocking_issues
    blocker = next((i for i in blocking if not i.correctable), None)
    if state.get("budget_error") is not None:
        reason = state["failure_reason"]
    elif blocker is not None:
        reason = f"non-correctable issue in {blocker.layer.value}"
    else:
        reason = f"attempts exhausted ({state.get('attempt', 0)}/{ctx.max_attempts})"

    state["status"] = AttemptStatus.FAILED.value
    state["failure_reason"] = reason
    logger.error(f"❌ SQL generation failed: {reason}; last issues: {[i.message for i in blocking]}")
    return state
