"""
Correction prompt construction.

The correction request always repeats the original prompt context so the
model rewrites against the same schema, rules and business context.

Under a budget the request is charged section by section. The original
instructions, business context and schema plus the correction blocks are
mandatory; when they leave too little room, earlier attempts go first
(oldest first), then the examples, glossary and rules sections of the
original context.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from bizsql.agents.sql.models import ValidationIssue
from bizsql.prompting.assembler import (
    SECTION_EXAMPLES,
    SECTION_GLOSSARY,
    SECTION_RULES,
    PromptContext,
    PromptSection,
)
from bizsql.prompting.templates import (
    CORRECTION_HEADER,
    render_correction_history,
    render_numbered_issues,
    section,
)
from bizsql.retrieval.tokens import TokenBudget, estimate_tokens

SECTION_CORRECTION = "correction"
SECTION_EARLIER_ATTEMPTS = "earlier_attempts"
SECTION_ORIGINAL_CONTEXT = "original_context"

# Lowest priority first
TRIMMABLE_SECTIONS = (SECTION_EXAMPLES, SECTION_GLOSSARY, SECTION_RULES)

PART_SEPARATOR = "\n\n"


def format_issue(issue: ValidationIssue) -> str:
    return f"[{issue.layer.value}] {issue.message}"


def _part_tokens(text: str) -> int:
    # One extra token covers the separator joining the part to the prompt
    return estimate_tokens(text) + 1


def _render_history(history: List[Dict[str, Any]]) -> str:
    if not history:
        return ""
    return section("EARLIER ATTEMPTS", render_correction_history(history))


def _fit_to_budget(
    sections: List[PromptSection],
    correction: List[str],
    history: List[Dict[str, Any]],
    budget: TokenBudget,
) -> Tuple[List[PromptSection], List[Dict[str, Any]]]:
    """
    Charge the request to ``budget`` and trim optional parts until it fits.

    Raises:
        TokenBudgetExceeded: the mandatory parts alone do not fit
    """
    mandatory = [s for s in sections if s.content and s.name not in TRIMMABLE_SECTIONS]
    budget.consume(sum(_part_tokens(s.content) for s in mandatory), SECTION_ORIGINAL_CONTEXT)
    budget.consume(sum(_part_tokens(p) for p in correction), SECTION_CORRECTION)

    def optional_tokens() -> int:
        total = sum(_part_tokens(s.content) for s in sections if s.content and s.name in TRIMMABLE_SECTIONS)
        if history:
            total += _part_tokens(_render_history(history))
        return total

    trimmed: List[str] = []
    while history and optional_tokens() > budget.remaining:
        history = history[1:]
        trimmed.append(SECTION_EARLIER_ATTEMPTS)
    for name in TRIMMABLE_SECTIONS:
        if optional_tokens() <= budget.remaining:
            break
        if any(s.name == name for s in sections):
            sections = [s for s in sections if s.name != name]
            trimmed.append(name)

    for s in sections:
        if s.content and s.name in TRIMMABLE_SECTIONS:
            budget.consume(_part_tokens(s.content), s.name)
    if history:
        budget.consume(_part_tokens(_render_history(history)), SECTION_EARLIER_ATTEMPTS)

    if trimmed:
        logger.info(f"Trimmed correction prompt to fit budget: {trimmed}")
    return sections, history


def build_correction_prompt(
    prompt_context: PromptContext,
    failing_sql: str,
    issues: Sequence[ValidationIssue],
    history: List[Dict[str, Any]],
    budget: Optional[TokenBudget] = None,
) -> str:
    """
    Original prompt + failing SQL + numbered issues + earlier attempts.

    ``history`` holds attempts before ``failing_sql``; the current one is
    shown separately so it is never duplicated.

    Raises:
        TokenBudgetExceeded: with ``budget``, the request cannot be trimmed to fit
    """
    correction = [
        section("CORRECTION", CORRECTION_HEADER),
        section("FAILING SQL", failing_sql),
        section("ISSUES", render_numbered_issues([format_issue(i) for i in issues])),
    ]
    sections = list(prompt_context.sections)
    history = list(history)
    if budget is not None:
        sections, history = _fit_to_budget(sections, correction, history, budget)

    parts = [s.content for s in sections if s.content] + correction
    if history:
        parts.append(_render_history(history))
    return PART_SEPARATOR.join(parts)
