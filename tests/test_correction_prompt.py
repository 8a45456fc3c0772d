"""
Tests for correction prompt construction.

The correction request must carry the original prompt context, the failing
SQL and every issue, so the model rewrites against the same schema and rules.
"""

import pytest

from bizsql.agents.sql.correction import build_correction_prompt, format_issue
from bizsql.agents.sql.models import ValidationIssue, ValidationLayer
from bizsql.prompting.assembler import PromptContext, PromptSection
from bizsql.retrieval.tokens import TokenBudget, estimate_tokens
from bizsql.utils.errors import TokenBudgetExceeded
from conftest import CURRENCY_JOIN_SQL

CONTEXT = PromptContext(
    sections=(
        PromptSection("instructions", "### INSTRUCTIONS\nOutput one SELECT.", 6),
        PromptSection("schema", "### SCHEMA\ntbl_Countries(CountryID, CountryName)", 11),
    ),
    token_count=17,
)

ISSUES = [
    ValidationIssue(ValidationLayer.SCHEMA_COMPLIANCE, "unknown_table", "Table 'tbl_Currencies' is not in the selected schema"),
    ValidationIssue(ValidationLayer.SCHEMA_COMPLIANCE, "unknown_column", "Column 'Foo' does not exist"),
]


def test_format_issue_names_the_layer():
    assert format_issue(ISSUES[0]) == "[SchemaCompliance] Table 'tbl_Currencies' is not in the selected schema"


def test_prompt_repeats_original_context_then_failure():
    """Original context first, then the failing SQL and numbered issues"""
    prompt = build_correction_prompt(CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=[])

    assert prompt.startswith(CONTEXT.render())
    assert prompt.index("### CORRECTION") < prompt.index("### FAILING SQL") < prompt.index("### ISSUES")
    assert CURRENCY_JOIN_SQL in prompt
    assert "1. [SchemaCompliance] Table 'tbl_Currencies'" in prompt
    assert "2. [SchemaCompliance] Column 'Foo'" in prompt
    assert "EARLIER ATTEMPTS" not in prompt


def test_history_is_listed_once():
    history = [{"attempt": 1, "sql": "SELECT 1", "issues": ["[Semantic] needs LIMIT 10"]}]
    prompt = build_correction_prompt(CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=history)

    earlier = prompt.split("### EARLIER ATTEMPTS", 1)[1]
    assert "Attempt 1:\nSELECT 1\nIssues: [Semantic] needs LIMIT 10" in earlier
    assert CURRENCY_JOIN_SQL not in earlier
    assert prompt.count(CURRENCY_JOIN_SQL) == 1


BUDGETED_CONTEXT = PromptContext(
    sections=(
        PromptSection("instructions", "### INSTRUCTIONS\nOutput one SELECT.", 6),
        PromptSection("schema", "### SCHEMA\ntbl_Countries(CountryID, CountryName)", 11),
        PromptSection("business_rules", "### BUSINESS RULES\n- Always filter tbl_Players.IsTestAccount = 0", 16),
        PromptSection("glossary", "### GLOSSARY\n- GGR: gross gaming revenue, bets minus wins", 14),
        PromptSection("examples", "### EXAMPLES\nQ: Total deposits by country yesterday\nSQL: " + "SELECT 1 " * 30, 84),
    ),
    token_count=131,
)

HISTORY = [{"attempt": 1, "sql": "SELECT 1", "issues": ["[Semantic] needs LIMIT 10"]}]


def _required_tokens(history):
    """Tokens the untrimmed request is charged."""
    budget = TokenBudget(100_000)
    build_correction_prompt(BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=history, budget=budget)
    return budget.consumed_tokens, budget.ledger


class TestCorrectionBudget:
    def test_generous_budget_keeps_everything(self):
        budget = TokenBudget(100_000)
        prompt = build_correction_prompt(BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=HISTORY, budget=budget)

        assert prompt == build_correction_prompt(BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=HISTORY)
        assert estimate_tokens(prompt) <= budget.consumed_tokens
        assert set(budget.ledger) == {
            "original_context", "correction", "business_rules", "glossary", "examples", "earlier_attempts",
        }

    def test_earlier_attempts_are_trimmed_first(self):
        required, _ = _required_tokens(HISTORY)
        budget = TokenBudget(required - 1)
        prompt = build_correction_prompt(BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=HISTORY, budget=budget)

        assert "### EARLIER ATTEMPTS" not in prompt
        assert "### EXAMPLES" in prompt
        assert estimate_tokens(prompt) <= required - 1

    def test_examples_go_before_glossary_and_rules(self):
        required, _ = _required_tokens([])
        budget = TokenBudget(required - 1)
        prompt = build_correction_prompt(BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=[], budget=budget)

        assert "### EXAMPLES" not in prompt
        assert "### GLOSSARY" in prompt
        assert "### BUSINESS RULES" in prompt
        assert estimate_tokens(prompt) <= required - 1

    def test_mandatory_parts_only(self):
        _, ledger = _required_tokens(HISTORY)
        mandatory = ledger["original_context"] + ledger["correction"]
        prompt = build_correction_prompt(
            BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=HISTORY, budget=TokenBudget(mandatory),
        )

        for title in ("EARLIER ATTEMPTS", "EXAMPLES", "GLOSSARY", "BUSINESS RULES"):
            assert f"### {title}" not in prompt
        assert "### SCHEMA" in prompt
        assert CURRENCY_JOIN_SQL in prompt
        assert estimate_tokens(prompt) <= mandatory

    def test_request_that_cannot_fit_raises(self):
        _, ledger = _required_tokens([])
        mandatory = ledger["original_context"] + ledger["correction"]

        with pytest.raises(TokenBudgetExceeded) as exc_info:
            build_correction_prompt(
                BUDGETED_CONTEXT, CURRENCY_JOIN_SQL, ISSUES, history=[], budget=TokenBudget(mandatory - 1),
            )
        assert exc_info.value.stage == "budget"
