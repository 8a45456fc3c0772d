"""
SQL generator node
"""

from loguru import logger

from bizsql.agents.sql.context import SQLContext
from bizsql.agents.sql.models import AttemptStatus, GeneratedSql
from bizsql.agents.sql.state import SQLGraphState
from bizsql.agents.sql.utils import trace_step
from bizsql.llm.response_utils import extract_sql_from_markdown


@trace_step("generate_sql")
async def generate_sql_node(state: SQLGraphState, ctx: SQLContext) -> SQLGraphState:
    """
    First generation from the assembled prompt.

    Raises:
        ModelError: provider failure after retries
        PipelineCancelled: the token fired while waiting on the model
    """
    prompt = state["prompt_context"].render()
    raw = await ctx.model.complete(prompt, max_tokens=ctx.max_output_tokens, token=ctx.token)
    sql = extract_sql_from_markdown(raw)

    state["sql"] = sql
    state["attempt"] = 1
    state["model_used"] = ctx.model.model_name
    state["generated"] = [GeneratedSql(text=sql, generation_attempt=1, model_used=ctx.model.model_name)]
    state["corrections"] = []
    state["history"] = []
    state["status"] = AttemptStatus.GENERATED.value
    logger.info(f"Generated SQL (attempt 1, {ctx.model.model_name}): {sql[:200]}")
    return state
