"""
SQL agent workflow - graph construction

    generate_sql -> validate_sql -> finalize            (valid)
                             \\-> correct_sql -> validate_sql   (invalid, attempts left)
                             \\-> finalize                      (blocked or exhausted)
    correct_sql -> finalize                             (request over budget)
"""

from langgraph.graph import END, StateGraph
from loguru import logger

from bizsql.agents.sql.context import SQLContext
from bizsql.agents.sql.models import AttemptStatus, OverallResult
from bizsql.agents.sql.nodes import correct_sql_node, finalize_node, generate_sql_node, validate_sql_node
from bizsql.agents.sql.state import SQLGraphState
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.prompting.assembler import PromptContext
from bizsql.retrieval.models import SchemaSelection


def _route_after_validation(state: SQLGraphState, max_attempts: int) -> str:
    """Route after validation."""
    if state.get("status") == AttemptStatus.VALID.value:
        return "finalize"

    blocking = OverallResult(tuple(state.get("validation_results") or ())).blocking_issues
    if any(not issue.correctable for issue in blocking):
        logger.error(f"Non-correctable validation failure: {[i.code for i in blocking if not i.correctable]}")
        return "finalize"

    attempt = state.get("attempt", 1)
    if attempt < max_attempts:
        logger.info(f"Validation failed, routing to correction (attempt {attempt + 1}/{max_attempts})")
        return "correct_sql"

    logger.error(f"Max attempts reached ({attempt}/{max_attempts})")
    return "finalize"


def _route_after_correction(state: SQLGraphState) -> str:
    if state.get("status") == AttemptStatus.FAILED.value:
        return "finalize"
    return "validate_sql"


def build_sql_workflow(ctx: SQLContext):
    """
    Build the SQL workflow graph with context bound to nodes.
    """
    g = StateGraph(SQLGraphState)

    async def generate(state):
        return await generate_sql_node(state, ctx)

    async def validate(state):
        return await validate_sql_node(state, ctx)

    async def correct(state):
        return await correct_sql_node(state, ctx)

    async def finalize(state):
        return await finalize_node(state, ctx)

    g.add_node("generate_sql", generate)
    g.add_node("validate_sql", validate)
    g.add_node("correct_sql", correct)
    g.add_node("finalize", finalize)

    g.set_entry_point("generate_sql")
    g.add_edge("generate_sql", "validate_sql")
    g.add_conditional_edges(
        "validate_sql",
        lambda s: _route_after_validation(s, ctx.max_attempts),
        {
            "correct_sql": "correct_sql",
            "finalize": "finalize",
        },
    )
    g.add_conditional_edges(
        "correct_sql",
        _route_after_correction,
        {
            "validate_sql": "validate_sql",
            "finalize": "finalize",
        },
    )
    g.add_edge("finalize", END)
    return g.compile()


async def run_sql_workflow(
    ctx: SQLContext,
    profile: BusinessContextProfile,
    selection: SchemaSelection,
    prompt_context: PromptContext,
    trace_id: str = "",
) -> SQLGraphState:
    """
    Generate and validate SQL for one request.

    Returns the terminal state; ``status`` is ``Valid`` or ``Failed``.

    Raises:
        ModelError: the model could not be reached
        PipelineCancelled: the caller cancelled or the deadline passed
    """
    graph = build_sql_workflow(ctx)
    initial: SQLGraphState = {
        "profile": profile,
        "selection": selection,
        "prompt_context": prompt_context,
        "attempt": 0,
        "trace_id": trace_id,
    }
    # generate + (validate, correct) per attempt + final validate + finalize
    recursion_limit = 2 * max(ctx.max_attempts, 1) + 4
    return await graph.ainvoke(initial, config={"recursion_limit": recursion_limit})
