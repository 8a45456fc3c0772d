"""
Tests for time expression resolution against a pinned clock (2024-03-15, a Friday).
"""

from datetime import date

import pytest

from bizsql.domain.time_resolver import TimeExpressionResolver, TimeGranularity, strip_time_phrases
from conftest import TODAY


@pytest.fixture
def resolver():
    return TimeExpressionResolver(clock=lambda: TODAY)


class TestExplicitExpressions:
    @pytest.mark.parametrize("question, start, end, granularity", [
        ("deposits yesterday", date(2024, 3, 14), date(2024, 3, 14), TimeGranularity.DAY),
        ("bets today", date(2024, 3, 15), date(2024, 3, 15), TimeGranularity.DAY),
        ("bets in the last 7 days", date(2024, 3, 9), date(2024, 3, 15), TimeGranularity.DAY),
        ("GGR last week", date(2024, 3, 4), date(2024, 3, 10), TimeGranularity.WEEK),
        ("GGR this week", date(2024, 3, 11), date(2024, 3, 17), TimeGranularity.WEEK),
        ("deposits this month", date(2024, 3, 1), date(2024, 3, 31), TimeGranularity.MONTH),
        ("deposits last month", date(2024, 2, 1), date(2024, 2, 29), TimeGranularity.MONTH),
        ("wins last quarter", date(2023, 10, 1), date(2023, 12, 31), TimeGranularity.QUARTER),
        ("wins this year", date(2024, 1, 1), date(2024, 12, 31), TimeGranularity.YEAR),
        ("deposits in March 2024", date(2024, 3, 1), date(2024, 3, 31), TimeGranularity.MONTH),
        ("deposits on 2024-01-05", date(2024, 1, 5), date(2024, 1, 5), TimeGranularity.DAY),
        ("deposits between 2024-01-01 and 2024-01-31", date(2024, 1, 1), date(2024, 1, 31), TimeGranularity.DAY),
    ])
    def test_resolves_to_inclusive_range(self, resolver, question, start, end, granularity):
        resolution = resolver.resolve(question)

        assert not resolution.ambiguous
        assert resolution.context.start_date == start
        assert resolution.context.end_date == end
        assert resolution.context.granularity == granularity

    def test_now_overrides_clock(self, resolver):
        """An explicit reference date wins over the injected clock"""
        resolution = resolver.resolve("deposits yesterday", now=date(2024, 1, 1))
        assert resolution.context.start_date == date(2023, 12, 31)


class TestAmbiguity:
    @pytest.mark.parametrize("question, phrase", [
        ("Show me recent sales", "recent"),
        ("deposits lately", "lately"),
        ("bets in the past", "past"),
    ])
    def test_vague_language_is_never_guessed(self, resolver, question, phrase):
        resolution = resolver.resolve(question)

        assert resolution.context is None
        assert resolution.ambiguous
        assert resolution.ambiguous_phrase == phrase

    def test_past_with_number_is_not_ambiguous(self, resolver):
        resolution = resolver.resolve("deposits in the past 30 days")
        assert resolution.context is not None
        assert resolution.context.start_date == date(2024, 2, 15)

    def test_invalid_date_is_ambiguous(self, resolver):
        """2024-02-30 looks like a date but is not one"""
        resolution = resolver.resolve("deposits on 2024-02-30")
        assert resolution.context is None
        assert resolution.ambiguous

    def test_reversed_range_is_ambiguous(self, resolver):
        resolution = resolver.resolve("deposits between 2024-02-01 and 2024-01-01")
        assert resolution.context is None
        assert resolution.ambiguous

    def test_no_time_language(self, resolver):
        resolution = resolver.resolve("total deposits by country")
        assert resolution.context is None
        assert not resolution.ambiguous


def test_strip_time_phrases_keeps_business_words():
    tokens = ["top", "10", "depositors", "last", "week", "from", "uk"]
    assert strip_time_phrases(tokens) == ["top", "depositors", "from", "uk"]
