"""
Tests for intent classification, domain classification and the business
context analyzer that combines them.
"""

import itertools

import pytest

from bizsql.config.constants import GENERAL_DOMAIN
from bizsql.domain.context.analyzer import BusinessContextAnalyzer
from bizsql.domain.context.domain_classifier import DomainClassifier
from bizsql.domain.context.intent import classify_intent, extract_top_n
from bizsql.domain.context.models import IntentType
from bizsql.domain.ontology.models import DomainDefinition, EntityType
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import AnalysisError, PipelineCancelled
from conftest import SALES_QUESTION, UK_QUESTION


class TestIntent:
    @pytest.mark.parametrize("question, intent", [
        (UK_QUESTION, IntentType.AGGREGATION),
        ("How many players registered last month", IntentType.AGGREGATION),
        ("Deposits last week by country", IntentType.AGGREGATION),
        ("Compare deposits vs withdrawals by country", IntentType.COMPARISON),
        ("List players sorted by signup date", IntentType.DETAIL),
        ("Compare deposits vs withdrawals", IntentType.COMPARISON),
        ("Daily GGR trend", IntentType.TREND),
        (SALES_QUESTION, IntentType.DETAIL),
        ("Which tables have available data", IntentType.EXPLORATORY),
        ("asdf qwer", IntentType.ANALYTICAL),
    ])
    def test_classification(self, question, intent):
        assert classify_intent(question).intent == intent

    def test_default_has_low_confidence(self):
        result = classify_intent("asdf qwer")
        assert result.confidence == pytest.approx(0.3)
        assert result.matched == ()

    def test_confidence_is_bounded(self):
        for question in (UK_QUESTION, "total count sum average top 5 highest per player"):
            assert 0.5 <= classify_intent(question).confidence <= 0.95

    def test_top_n(self):
        assert extract_top_n("Top 10 depositors") == 10
        assert extract_top_n("top depositors") is None


class TestDomainClassifier:
    def test_priority_breaks_ties(self):
        classifier = DomainClassifier(
            [
                DomainDefinition("Gaming", ("bets",), priority=2),
                DomainDefinition("Banking", ("bets",), priority=1),
            ],
            min_score=0.1,
        )
        assert classifier.classify("bets yesterday", []).name == "Banking"

    def test_falls_back_to_general(self, dictionary):
        match = DomainClassifier(dictionary.domains).classify("asdf qwer", [])
        assert match.name == GENERAL_DOMAIN
        assert match.confidence == pytest.approx(0.2)


class TestAnalyzer:
    def test_depositors_from_uk(self, uk_profile):
        """Top 10 depositors yesterday from UK"""
        assert uk_profile.intent == IntentType.AGGREGATION
        assert uk_profile.top_n == 10
        assert uk_profile.domain.name == "Banking"
        assert uk_profile.time_context.start_date.isoformat() == "2024-03-14"
        assert uk_profile.time_context.end_date.isoformat() == "2024-03-14"
        assert not uk_profile.time_ambiguous

        by_name = {e.name: e for e in uk_profile.entities}
        assert set(by_name) == {"depositors", "uk"}
        assert by_name["depositors"].entity_type == EntityType.METRIC
        assert by_name["uk"].mapped_table == "tbl_Countries"
        assert by_name["uk"].literal_value == "United Kingdom"
        assert uk_profile.entity_tables == ["tbl_Daily_actions", "tbl_Countries"]
        assert 0.0 < uk_profile.overall_confidence <= 1.0

    def test_recent_sales_is_ambiguous(self, sales_profile):
        assert sales_profile.intent == IntentType.DETAIL
        assert sales_profile.domain.name == "Gaming"
        assert sales_profile.time_context is None
        assert sales_profile.time_ambiguous
        assert sales_profile.ambiguous_time_phrase == "recent"
        assert [e.mapped_column for e in sales_profile.entities] == ["GGR"]

    def test_unknown_words_give_general_domain(self, analyzer):
        profile = analyzer.analyze("asdf qwer", "u1")
        assert profile.domain.name == GENERAL_DOMAIN
        assert profile.entities == ()

    def test_profile_is_immutable(self, uk_profile):
        with pytest.raises(AttributeError):
            uk_profile.top_n = 5

    @pytest.mark.parametrize("question", ["", "   ", None])
    def test_empty_question(self, analyzer, question):
        with pytest.raises(AnalysisError):
            analyzer.analyze(question, "u1")

    def test_oversized_question(self, analyzer):
        with pytest.raises(AnalysisError, match="limit"):
            analyzer.analyze("deposits " * 100, "u1")

    def test_time_limit(self, dictionary, catalog, time_resolver):
        """Each step checks elapsed time; a clock jumping 5s per read trips the limit"""
        ticks = itertools.count(0, 5)
        analyzer = BusinessContextAnalyzer(
            dictionary, catalog, time_resolver=time_resolver, clock=lambda: next(ticks)
        )
        with pytest.raises(AnalysisError, match="exceeded"):
            analyzer.analyze(UK_QUESTION, "u1")

    def test_cancelled_token(self, analyzer):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(PipelineCancelled):
            analyzer.analyze(UK_QUESTION, "u1", token=token)

    def test_to_dict(self, uk_profile):
        data = uk_profile.to_dict()
        assert data["intent"] == "Aggregation"
        assert data["time_context"]["start_date"] == "2024-03-14"
        assert {e["name"] for e in data["entities"]} == {"depositors", "uk"}
