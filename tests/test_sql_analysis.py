"""
Tests for the sqlglot AST helpers used by the validation layers.
"""

import pytest
from sqlglot.errors import ParseError

from bizsql.sql.analysis.ast_utils import (
    get_aggregated_columns,
    get_column_references,
    get_cte_names,
    get_date_literals,
    get_derived_aliases,
    get_filter_literals,
    get_filtered_columns,
    get_limit,
    get_order_by,
    get_projection_aliases,
    get_table_names,
    get_table_references,
    has_aggregate,
    is_read_only_query,
    parse_sql,
    parse_statements,
)
from conftest import SCENARIO_1_SQL


class TestParsing:
    def test_parse_select(self):
        assert is_read_only_query(parse_sql("SELECT 1"))

    def test_write_statement_is_not_read_only(self):
        assert not is_read_only_query(parse_sql("DELETE FROM tbl_Countries"))

    def test_stacked_statements_are_split(self):
        statements = parse_statements("SELECT 1; DROP TABLE tbl_Countries")
        assert len(statements) == 2

    def test_parse_error(self):
        with pytest.raises(ParseError):
            parse_sql("SELECT d.Date FROM tbl_Daily_actions d WHERE (d.GGR > 0")


class TestReferences:
    def test_aliases_resolve_to_tables(self):
        refs = get_table_references(parse_sql(
            "SELECT * FROM orders o JOIN users ON o.uid = users.id"
        ))
        assert refs == {"o": "orders", "orders": "orders", "users": "users"}

    def test_ctes_are_not_physical_tables(self):
        ast = parse_sql("WITH t AS (SELECT PlayerID FROM players) SELECT * FROM t")
        assert get_cte_names(ast) == {"t"}
        assert get_table_names(ast) == ["players"]
        assert "t" not in get_table_references(ast)

    def test_derived_aliases(self):
        ast = parse_sql("SELECT x.total FROM (SELECT SUM(Deposits) AS total FROM tbl_Daily_actions) x")
        assert get_derived_aliases(ast) == {"x"}
        assert get_projection_aliases(ast) == {"total"}

    def test_column_references(self):
        refs = get_column_references(parse_sql("SELECT o.total, status, o.* FROM orders o"))
        assert set(refs) == {("o", "total"), (None, "status")}


class TestClauses:
    def test_scenario_query(self):
        ast = parse_sql(SCENARIO_1_SQL)

        assert has_aggregate(ast)
        assert "deposits" in get_aggregated_columns(ast)
        assert get_limit(ast) == 10
        (expression, descending), = get_order_by(ast)
        assert descending
        assert get_date_literals(ast) == ["2024-03-14"]
        assert "united kingdom" in get_filter_literals(ast)
        assert {"date", "countryname", "istestaccount"} <= get_filtered_columns(ast)

    def test_no_aggregate_or_limit(self):
        ast = parse_sql("SELECT d.Date FROM tbl_Daily_actions d ORDER BY d.Date")
        assert not has_aggregate(ast)
        assert get_limit(ast) is None
        assert get_order_by(ast)[0][1] is False

    def test_date_literals_are_truncated_to_the_day(self):
        ast = parse_sql("SELECT 1 FROM t WHERE ts >= '2024-03-14 00:00:00' AND name = 'x'")
        assert get_date_literals(ast) == ["2024-03-14"]
        assert get_filter_literals(ast) == {"2024-03-14 00:00:00", "x"}
