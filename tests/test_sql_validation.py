"""
Tests for the five validation layers and the short-circuiting validator.

Layers are exercised one at a time against the real registry rules and the
schema selections retrieval produces for the two reference questions.
"""

import asyncio
import dataclasses

import pytest

from bizsql.agents.sql.models import (
    IssueSeverity,
    OverallResult,
    ValidationLayer,
    ValidationResult,
)
from bizsql.agents.sql.validation import mask_literals, validate_sql
from bizsql.agents.sql.validation.business import validate_business_logic
from bizsql.agents.sql.validation.dry_run import validate_dry_run
from bizsql.agents.sql.validation.schema import validate_schema_compliance
from bizsql.agents.sql.validation.security import validate_security
from bizsql.agents.sql.validation.semantic import validate_semantics
from bizsql.domain.context.models import IntentType
from bizsql.sql.execution.dry_run import ExplainResult
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import DryRunError, PipelineCancelled
from conftest import CURRENCY_JOIN_SQL, SALES_SQL, SCENARIO_1_SQL, FakeSandbox

# Scenario query with the aggregate, ordering and limit removed
UNAGGREGATED_SQL = (
    "SELECT p.Username, d.Deposits FROM tbl_Daily_actions d "
    "JOIN tbl_Daily_actions_players p ON d.PlayerID = p.PlayerID "
    "JOIN tbl_Countries c ON p.CountryID = c.CountryID "
    "WHERE d.Date = '2024-03-14' AND c.CountryName = 'United Kingdom' AND p.IsTestAccount = 0"
)


def run(layer, ctx) -> ValidationResult:
    return asyncio.run(layer(ctx))


def codes(result: ValidationResult):
    return {issue.code for issue in result.issues}


def test_mask_literals():
    assert mask_literals("SELECT 'DROP; --' AS x, \"a\"") == "SELECT '' AS x, ''"


class TestSecurity:
    def test_valid_query_passes(self, make_validation_context, uk_profile, uk_selection):
        result = run(validate_security, make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection))
        assert result.passed
        assert result.score == 1.0

    @pytest.mark.parametrize("sql, code", [
        ("DROP TABLE tbl_Daily_actions", "forbidden_statement"),
        ("DROP TABLE tbl_Daily_actions", "not_read_only"),
        ("SELECT d.Date FROM tbl_Daily_actions d; DELETE FROM tbl_Countries", "stacked_statements"),
        ("SELECT d.Date FROM tbl_Daily_actions d -- hi", "sql_comment"),
        ("SELECT d.Date FROM tbl_Daily_actions d WHERE d.GGR > 0 OR 1=1", "tautology"),
        ("SELECT d.Date FROM tbl_Daily_actions d WHERE d.GGR > 0 OR 'a'='a'", "tautology"),
        ("SELECT SLEEP(5)", "time_delay"),
        ("SELECT * FROM information_schema.tables", "system_object"),
        ("SELECT LOAD_FILE('/etc/passwd')", "file_access"),
    ])
    def test_blocked(self, make_validation_context, uk_profile, uk_selection, sql, code):
        result = run(validate_security, make_validation_context(sql, uk_profile, uk_selection))

        assert not result.passed
        assert code in codes(result)
        assert all(not issue.correctable for issue in result.issues)

    def test_keywords_inside_literals_are_ignored(self, make_validation_context, uk_profile, uk_selection):
        sql = "SELECT c.CountryName FROM tbl_Countries c WHERE c.CountryName = 'Update Island'"
        assert run(validate_security, make_validation_context(sql, uk_profile, uk_selection)).passed

    def test_unvetted_question_literal(self, make_validation_context, uk_profile, uk_selection):
        """'top' appears in the question but entity linking never vetted it as a value"""
        sql = "SELECT c.CountryName FROM tbl_Countries c WHERE c.CountryName = 'top'"
        result = run(validate_security, make_validation_context(sql, uk_profile, uk_selection))
        assert codes(result) == {"unvetted_literal"}

    def test_unparseable_sql_is_left_to_schema_layer(self, make_validation_context, uk_profile, uk_selection):
        sql = "SELECT d.Date FROM tbl_Daily_actions d WHERE (d.GGR > 0"
        assert run(validate_security, make_validation_context(sql, uk_profile, uk_selection)).passed


class TestSchemaCompliance:
    def test_valid_query_passes(self, make_validation_context, uk_profile, uk_selection):
        assert run(validate_schema_compliance, make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection)).passed

    def test_table_outside_selection(self, make_validation_context, uk_profile, uk_selection):
        result = run(validate_schema_compliance, make_validation_context(CURRENCY_JOIN_SQL, uk_profile, uk_selection))

        assert [issue.code for issue in result.issues] == ["unknown_table"]
        assert "tbl_Currencies" in result.issues[0].message
        assert result.issues[0].correctable
        assert result.score == pytest.approx(0.75)

    @pytest.mark.parametrize("sql, code", [
        ("SELECT d.Foo FROM tbl_Daily_actions d", "unknown_column"),
        ("SELECT d.UpdatedAt FROM tbl_Daily_actions d", "unknown_column"),
        ("SELECT Foo FROM tbl_Daily_actions d", "unknown_column"),
        ("SELECT x.Date FROM tbl_Daily_actions d", "unknown_alias"),
        ("SELECT d.Date FROM tbl_Daily_actions d WHERE (d.GGR > 0", "parse_error"),
    ])
    def test_hallucinations(self, make_validation_context, sales_profile, sales_selection, sql, code):
        result = run(validate_schema_compliance, make_validation_context(sql, sales_profile, sales_selection))
        assert codes(result) == {code}

    def test_ctes_and_projection_aliases_resolve(self, make_validation_context, sales_profile, sales_selection):
        sql = (
            "WITH t AS (SELECT d.Date, SUM(d.GGR) AS total FROM tbl_Daily_actions d GROUP BY d.Date) "
            "SELECT t.Date, total FROM t ORDER BY total DESC"
        )
        assert run(validate_schema_compliance, make_validation_context(sql, sales_profile, sales_selection)).passed


class TestSemantics:
    def _validate(self, make_validation_context, sql, profile, selection):
        return run(validate_semantics, make_validation_context(sql, profile, selection, parse=True))

    def test_valid_query_passes(self, make_validation_context, uk_profile, uk_selection):
        result = self._validate(make_validation_context, SCENARIO_1_SQL, uk_profile, uk_selection)
        assert result.passed
        assert result.issues == ()

    def test_aggregation_and_top_n_shape(self, make_validation_context, uk_profile, uk_selection):
        result = self._validate(make_validation_context, UNAGGREGATED_SQL, uk_profile, uk_selection)
        assert codes(result) == {"missing_aggregation", "missing_order_by", "wrong_limit"}

    def test_ascending_top_n_is_a_warning(self, make_validation_context, uk_profile, uk_selection):
        sql = SCENARIO_1_SQL.replace(" DESC", "")
        result = self._validate(make_validation_context, sql, uk_profile, uk_selection)

        assert result.passed
        assert codes(result) == {"ascending_top_n"}
        assert result.score == pytest.approx(0.95)

    @pytest.mark.parametrize("old, new, code", [
        ("SUM(d.Deposits)", "SUM(d.Bets)", "metric_not_used"),
        ("'United Kingdom'", "'France'", "value_filter_missing"),
        ("d.Date = '2024-03-14'", "d.Date = '2024-03-01'", "date_range_mismatch"),
        ("d.Date = '2024-03-14'", "d.Date = DATE_SUB(CURDATE(), INTERVAL 1 DAY)", "relative_date_filter"),
        ("d.Date = '2024-03-14' AND ", "", "missing_date_filter"),
        ("d.Date = '2024-03-14'", "d.Date = '2024-02-30'", "invalid_date"),
    ])
    def test_misaligned_query(self, make_validation_context, uk_profile, uk_selection, old, new, code):
        sql = SCENARIO_1_SQL.replace(old, new)
        result = self._validate(make_validation_context, sql, uk_profile, uk_selection)

        assert not result.passed
        assert code in codes(result)

    def test_exclusive_upper_bound_is_accepted(self, make_validation_context, uk_profile, uk_selection):
        sql = SCENARIO_1_SQL.replace(
            "d.Date = '2024-03-14'", "d.Date >= '2024-03-14' AND d.Date < '2024-03-15'"
        )
        assert self._validate(make_validation_context, sql, uk_profile, uk_selection).passed

    def test_ambiguous_time_without_date_filter(self, make_validation_context, sales_profile, sales_selection):
        result = self._validate(make_validation_context, SALES_SQL, sales_profile, sales_selection)

        assert result.passed
        assert [(i.code, i.severity) for i in result.issues] == [("ambiguous_time", IssueSeverity.WARNING)]

    def test_invented_date_range(self, make_validation_context, sales_profile, sales_selection):
        """'recent' must never turn into a guessed date range"""
        sql = (
            "SELECT d.Date, d.GGR FROM tbl_Daily_actions d "
            "WHERE d.Date >= DATE_SUB(CURDATE(), INTERVAL 7 DAY) ORDER BY d.Date DESC LIMIT 100"
        )
        result = self._validate(make_validation_context, sql, sales_profile, sales_selection)

        assert not result.passed
        assert "invented_date_range" in codes(result)
        assert all(i.correctable for i in result.errors)

    def test_trend_needs_grouping(self, make_validation_context, uk_profile, uk_selection):
        trend = dataclasses.replace(uk_profile, intent=IntentType.TREND, top_n=None)

        grouped = self._validate(make_validation_context, SCENARIO_1_SQL, trend, uk_selection)
        flat = self._validate(make_validation_context, UNAGGREGATED_SQL, trend, uk_selection)

        assert grouped.passed
        assert codes(flat) == {"missing_time_grouping"}


class TestBusinessLogic:
    def _validate(self, make_validation_context, sql, profile, selection):
        return run(validate_business_logic, make_validation_context(sql, profile, selection, parse=True))

    def test_valid_query_passes(self, make_validation_context, uk_profile, uk_selection):
        assert self._validate(make_validation_context, SCENARIO_1_SQL, uk_profile, uk_selection).passed

    @pytest.mark.parametrize("old, new", [
        ("p.IsTestAccount = 0", "p.IsTestAccount = FALSE"),
        ("p.IsTestAccount = 0", "IsTestAccount = 0"),
        ("p.IsTestAccount = 0", "0 = p.IsTestAccount"),
    ])
    def test_equivalent_required_filters(self, make_validation_context, uk_profile, uk_selection, old, new):
        sql = SCENARIO_1_SQL.replace(old, new)
        assert self._validate(make_validation_context, sql, uk_profile, uk_selection).passed

    @pytest.mark.parametrize("old, new", [
        (" AND p.IsTestAccount = 0", ""),
        ("p.IsTestAccount = 0", "p.IsTestAccount = 1"),
    ])
    def test_required_filter_missing(self, make_validation_context, uk_profile, uk_selection, old, new):
        sql = SCENARIO_1_SQL.replace(old, new)
        result = self._validate(make_validation_context, sql, uk_profile, uk_selection)

        assert codes(result) == {"required_filter_missing"}
        assert "IsTestAccount" in result.issues[0].message

    def test_forbidden_column(self, make_validation_context, uk_profile, uk_selection):
        sql = SCENARIO_1_SQL.replace("p.Username", "p.Email")
        result = self._validate(make_validation_context, sql, uk_profile, uk_selection)
        assert codes(result) == {"forbidden_column"}

    def test_rules_only_apply_to_touched_tables(self, make_validation_context, sales_profile, sales_selection):
        result = self._validate(make_validation_context, SALES_SQL, sales_profile, sales_selection)
        assert result.passed
        assert result.issues == ()


class TestDryRun:
    def test_without_sandbox_is_skipped_with_warning(self, make_validation_context, uk_profile, uk_selection):
        result = run(validate_dry_run, make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection))

        assert result.passed
        assert codes(result) == {"dry_run_skipped"}
        assert result.score == pytest.approx(0.95)

    def test_plan_ok(self, make_validation_context, uk_profile, uk_selection):
        sandbox = FakeSandbox()
        result = run(validate_dry_run, make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection, sandbox))

        assert result.passed
        assert sandbox.calls == [SCENARIO_1_SQL]

    def test_engine_error_is_normalized(self, make_validation_context, uk_profile, uk_selection):
        sandbox = FakeSandbox(ExplainResult(syntax_error="no such column: d.Foo"))
        result = run(validate_dry_run, make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection, sandbox))

        assert not result.passed
        issue = result.issues[0]
        assert issue.code == "unknown_column"
        assert issue.message == "Unknown column 'd.Foo'"
        assert issue.correctable

    def test_result_too_large(self, make_validation_context, uk_profile, uk_selection):
        sandbox = FakeSandbox(ExplainResult(estimated_rows=10_000_000, estimated_cost=5.0))
        result = run(validate_dry_run, make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection, sandbox))
        assert codes(result) == {"result_too_large"}

    def test_sandbox_failure_is_not_correctable(self, make_validation_context, uk_profile, uk_selection):
        class BrokenSandbox:
            async def explain(self, sql, timeout, token=None):
                raise DryRunError("connection refused", stage="validation")

        ctx = make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection, BrokenSandbox())
        result = run(validate_dry_run, ctx)

        assert codes(result) == {"sandbox_unavailable"}
        assert not result.issues[0].correctable


class TestValidator:
    def test_all_layers_pass(self, make_validation_context, uk_profile, uk_selection):
        ctx = make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection, FakeSandbox())
        overall = OverallResult(tuple(asyncio.run(validate_sql(ctx))))

        assert [r.layer for r in overall.results] == list(ValidationLayer)
        assert overall.valid
        assert overall.score == 1.0

    def test_security_failure_never_reaches_dry_run(self, make_validation_context, uk_profile, uk_selection):
        sandbox = FakeSandbox()
        ctx = make_validation_context("DROP TABLE tbl_Daily_actions", uk_profile, uk_selection, sandbox)
        results = asyncio.run(validate_sql(ctx))

        assert [r.layer for r in results] == [ValidationLayer.SECURITY]
        assert sandbox.calls == []

    def test_stops_at_first_failed_layer(self, make_validation_context, uk_profile, uk_selection):
        ctx = make_validation_context(CURRENCY_JOIN_SQL, uk_profile, uk_selection, FakeSandbox())
        overall = OverallResult(tuple(asyncio.run(validate_sql(ctx))))

        assert [r.layer for r in overall.results] == [ValidationLayer.SECURITY, ValidationLayer.SCHEMA_COMPLIANCE]
        assert not overall.valid
        # Layers that never ran count as zero
        assert overall.score == pytest.approx(0.35)
        assert [i.code for i in overall.blocking_issues] == ["unknown_table"]

    def test_parse_error_is_reported_by_schema_layer(self, make_validation_context, uk_profile, uk_selection):
        ctx = make_validation_context(
            "SELECT d.Date FROM tbl_Daily_actions d WHERE (d.GGR > 0", uk_profile, uk_selection
        )
        results = asyncio.run(validate_sql(ctx))

        assert results[0].passed
        assert codes(results[1]) == {"parse_error"}

    def test_cancelled(self, make_validation_context, uk_profile, uk_selection):
        token = CancellationToken()
        token.cancel()
        ctx = make_validation_context(SCENARIO_1_SQL, uk_profile, uk_selection, token=token)
        with pytest.raises(PipelineCancelled):
            asyncio.run(validate_sql(ctx))
