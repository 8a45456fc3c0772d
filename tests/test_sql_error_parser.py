"""
Tests for dry-run error normalization (raw MySQL / SQLite errors -> semantic types).
"""

import pytest

from bizsql.agents.sql.correction.error_parser import normalize_error
from bizsql.agents.sql.correction.error_types import NormalizedError, SQLErrorType


class TestErrorNormalization:
    """Test error_parser.normalize_error()"""

    def test_group_by_violation(self):
        """Test GROUP BY violation error normalization"""
        error_msg = (
            "Expression #2 of SELECT list is not in GROUP BY clause and contains "
            "nonaggregated column 'casino.tbl_Daily_actions_players.Username' which is not "
            "functionally dependent on columns in GROUP BY clause"
        )

        normalized = normalize_error(error_msg)

        assert normalized.error_type == SQLErrorType.GROUP_BY_VIOLATION
        assert normalized.details["expression_num"] == 2
        assert normalized.details["column"].endswith("players.Username")
        assert normalized.raw_message == error_msg

    def test_duplicate_alias(self):
        normalized = normalize_error("Not unique table/alias: 'd'")

        assert normalized.error_type == SQLErrorType.DUPLICATE_ALIAS
        assert normalized.details["table"] == "d"

    def test_unknown_column_mysql(self):
        """Test unknown column error normalization"""
        normalized = normalize_error("(1054, \"Unknown column 'p.Country' in 'where clause'\")")

        assert normalized.error_type == SQLErrorType.UNKNOWN_COLUMN
        assert normalized.details["column"] == "p.Country"
        assert normalized.details["location"] == "where clause"

    def test_unknown_column_sqlite(self):
        normalized = normalize_error("no such column: p.Country")

        assert normalized.error_type == SQLErrorType.UNKNOWN_COLUMN
        assert normalized.details["column"] == "p.Country"
        assert normalized.describe() == "Unknown column 'p.Country'"

    @pytest.mark.parametrize("error_msg, table", [
        ("Table 'casino.tbl_Sales' doesn't exist", "casino.tbl_Sales"),
        ("no such table: tbl_Sales", "tbl_Sales"),
    ])
    def test_unknown_table(self, error_msg, table):
        normalized = normalize_error(error_msg)

        assert normalized.error_type == SQLErrorType.UNKNOWN_TABLE
        assert normalized.details["table"] == table

    @pytest.mark.parametrize("error_msg", [
        "Column 'PlayerID' in field list is ambiguous",
        "ambiguous column name: PlayerID",
    ])
    def test_ambiguous_column(self, error_msg):
        normalized = normalize_error(error_msg)

        assert normalized.error_type == SQLErrorType.AMBIGUOUS_COLUMN
        assert normalized.details["column"] == "PlayerID"
        assert "qualify it" in normalized.describe()

    @pytest.mark.parametrize("error_msg", [
        'near "FORM": syntax error',
        "You have an error in your SQL syntax; check the manual",
    ])
    def test_syntax_error(self, error_msg):
        assert normalize_error(error_msg).error_type == SQLErrorType.SYNTAX_ERROR

    def test_unknown_error_type(self):
        """Test unrecognized error falls back to OTHER"""
        error_msg = "Some weird database error we've never seen"

        normalized = normalize_error(error_msg)

        assert normalized.error_type == SQLErrorType.OTHER
        assert normalized.details == {}
        assert normalized.describe() == error_msg


class TestNormalizedError:
    """Test NormalizedError dataclass"""

    def test_get_detail(self):
        error = NormalizedError(
            error_type=SQLErrorType.GROUP_BY_VIOLATION,
            raw_message="test error",
            details={"expression_num": 2, "column": "test.col"}
        )

        assert error.get_detail("expression_num") == 2
        assert error.get_detail("missing_key") is None
        assert error.get_detail("missing_key", default=42) == 42
        assert error.describe() == "test.col is selected but neither aggregated nor in GROUP BY"

    def test_rejects_raw_strings(self):
        with pytest.raises(TypeError):
            NormalizedError(error_type="unknown_column", raw_message="x", details={})

    def test_str_representation(self):
        error = NormalizedError(
            error_type=SQLErrorType.UNKNOWN_COLUMN,
            raw_message="test",
            details={"column": "users.id"}
        )

        str_repr = str(error)
        assert "unknown_column" in str_repr
        assert "users.id" in str_repr
