"""
SQL correction node - resubmits the failing SQL with validator feedback
"""

from loguru import logger

from bizsql.agents.sql.context import SQLContext
from bizsql.agents.sql.correction import build_correction_prompt, format_issue
from bizsql.agents.sql.models import AttemptStatus, CorrectionAttempt, GeneratedSql, OverallResult
from bizsql.agents.sql.state import SQLGraphState
from bizsql.agents.sql.utils import trace_step
from bizsql.llm.response_utils import extract_sql_from_markdown
from bizsql.retrieval.tokens import TokenBudget
from bizsql.utils.errors import TokenBudgetExceeded


@trace_step("correct_sql")
async def correct_sql_node(state: SQLGraphState, ctx: SQLContext) -> SQLGraphState:
    """
    Ask the model to fix the current attempt.

    A request that cannot be trimmed to the token budget ends the run as
    Failed without calling the model.

    Raises:
        ModelError: provider failure after retries
        PipelineCancelled: the token fired while waiting on the model
    """
    state["status"] = AttemptStatus.CORRECTION_REQUESTED.value
    failing_sql = state["sql"]
    issues = OverallResult(tuple(state.get("validation_results") or ())).blocking_issues
    history = list(state.get("history") or [])

    try:
        budget = TokenBudget.from_config(ctx.budget_config)
        prompt = build_correction_prompt(state["prompt_context"], failing_sql, issues, history, budget=budget)
    except TokenBudgetExceeded as e:
        logger.error(f"❌ Correction request does not fit the token budget: {e.message}")
        state["status"] = AttemptStatus.FAILED.value
        state["failure_reason"] = "correction request exceeds token budget"
        state["budget_error"] = e
        return state

    logger.info(f"Requesting correction {state['attempt'] + 1}/{ctx.max_attempts} for {len(issues)} issue(s)")

    raw = await ctx.model.complete(prompt, max_tokens=ctx.max_output_tokens, token=ctx.token)
    corrected = extract_sql_from_markdown(raw)
    attempt = state["attempt"] + 1

    history.append({"attempt": state["attempt"], "sql": failing_sql, "issues": [format_issue(i) for i in issues]})
    state["history"] = history
    state["corrections"] = list(state.get("corrections") or []) + [CorrectionAttempt(
        attempt_number=attempt,
        prior_sql=failing_sql,
        issues=tuple(issues),
        corrected_sql=corrected,
    )]
    state["generated"] = list(state.get("generated") or []) + [
        GeneratedSql(text=corrected, generation_attempt=attempt, model_used=ctx.model.model_name)
    ]
    state["sql"] = corrected
    state["attempt"] = attempt
    state["status"] = AttemptStatus.REGENERATED.value
    logger.debug(f"Regenerated SQL (attempt {attempt}): {corrected[:200]}")
    return state
