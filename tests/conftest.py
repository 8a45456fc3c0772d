"""
Shared fixtures: the real registry and catalog snapshot from artifacts/,
a pinned clock, and fakes for the model, embeddings and dry-run sandbox.
"""

import asyncio
from datetime import date
from typing import Dict, List, Optional, Sequence, Union

import pytest
from langchain_core.embeddings import Embeddings

from bizsql.agents.sql.validation import ValidationContext
from bizsql.config.settings import PROJECT_ROOT
from bizsql.domain.context.analyzer import BusinessContextAnalyzer
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.domain.time_resolver import TimeExpressionResolver
from bizsql.pipeline import QueryPipeline
from bizsql.prompting.assembler import ContextAssembler
from bizsql.retrieval.engine import SchemaRetrievalEngine
from bizsql.retrieval.tokens import TokenBudget
from bizsql.sql.analysis.ast_utils import parse_sql
from bizsql.sql.catalog.snapshot import SnapshotCatalog
from bizsql.sql.execution.dry_run import ExplainResult
from bizsql.utils.errors import ModelError

# A Friday; "yesterday" is 2024-03-14
TODAY = date(2024, 3, 15)

UK_QUESTION = "Top 10 depositors yesterday from UK"
SALES_QUESTION = "Show me recent sales"

SCENARIO_1_SQL = (
    "SELECT p.Username, SUM(d.Deposits) AS TotalDeposits "
    "FROM tbl_Daily_actions d "
    "JOIN tbl_Daily_actions_players p ON d.PlayerID = p.PlayerID "
    "JOIN tbl_Countries c ON p.CountryID = c.CountryID "
    "WHERE d.Date = '2024-03-14' AND c.CountryName = 'United Kingdom' AND p.IsTestAccount = 0 "
    "GROUP BY p.Username ORDER BY TotalDeposits DESC LIMIT 10"
)

# Joins a table retrieval did not select
CURRENCY_JOIN_SQL = (
    "SELECT p.Username, SUM(d.Deposits) AS TotalDeposits "
    "FROM tbl_Daily_actions d "
    "JOIN tbl_Daily_actions_players p ON d.PlayerID = p.PlayerID "
    "JOIN tbl_Currencies cu ON p.CurrencyID = cu.CurrencyID "
    "WHERE d.Date = '2024-03-14' AND cu.CurrencyCode = 'GBP' AND p.IsTestAccount = 0 "
    "GROUP BY p.Username ORDER BY TotalDeposits DESC LIMIT 10"
)

SALES_SQL = "SELECT d.Date, d.GGR FROM tbl_Daily_actions d ORDER BY d.Date DESC LIMIT 100"


class FakeModelClient:
    """Returns canned responses in order and records every prompt."""

    def __init__(self, responses: Sequence[Union[str, Exception]], model_name: str = "fake-model"):
        self.responses = list(responses)
        self.model_name = model_name
        self.prompts: List[str] = []

    async def complete(self, prompt: str, max_tokens: int, token=None) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise ModelError("No more canned responses", stage="generation")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeSandbox:
    """Dry-run sandbox returning a fixed result (or per-SQL results)."""

    def __init__(self, result: Optional[ExplainResult] = None, by_sql: Optional[Dict[str, ExplainResult]] = None):
        self.result = result or ExplainResult(estimated_rows=100, estimated_cost=1.0)
        self.by_sql = by_sql or {}
        self.calls: List[str] = []

    async def explain(self, sql: str, timeout: float, token=None) -> ExplainResult:
        self.calls.append(sql)
        return self.by_sql.get(sql, self.result)


class KeywordEmbeddings(Embeddings):
    """Bag-of-words vectors over a fixed vocabulary; deterministic and offline."""

    VOCABULARY = ("deposit", "player", "country", "currency", "revenue", "bet", "withdraw", "registration")

    def _embed(self, text: str) -> List[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.VOCABULARY]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(t) for t in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)


class RecordingTraceSink:
    def __init__(self):
        self.events: List[tuple] = []

    def record(self, event: str, payload) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.events]


@pytest.fixture(scope="session")
def dictionary() -> BusinessTermDictionary:
    return BusinessTermDictionary.from_file(PROJECT_ROOT / "artifacts" / "business_registry.json")


@pytest.fixture(scope="session")
def catalog() -> SnapshotCatalog:
    return SnapshotCatalog.from_file(PROJECT_ROOT / "artifacts" / "catalog_snapshot.json")


@pytest.fixture
def time_resolver() -> TimeExpressionResolver:
    return TimeExpressionResolver(clock=lambda: TODAY)


@pytest.fixture
def analyzer(dictionary, catalog, time_resolver) -> BusinessContextAnalyzer:
    return BusinessContextAnalyzer(dictionary, catalog, time_resolver=time_resolver)


@pytest.fixture
def retrieval(dictionary, catalog) -> SchemaRetrievalEngine:
    return SchemaRetrievalEngine(catalog, dictionary)


@pytest.fixture
def assembler(dictionary) -> ContextAssembler:
    return ContextAssembler(dictionary, dialect="mysql", max_examples=3)


@pytest.fixture
def budget() -> TokenBudget:
    return TokenBudget(3500)


@pytest.fixture
def uk_profile(analyzer):
    return analyzer.analyze(UK_QUESTION, "analyst-1")


@pytest.fixture
def uk_selection(retrieval, uk_profile):
    return asyncio.run(retrieval.retrieve(uk_profile, TokenBudget(3500)))


@pytest.fixture
def sales_profile(analyzer):
    return analyzer.analyze(SALES_QUESTION, "analyst-1")


@pytest.fixture
def sales_selection(retrieval, sales_profile):
    return asyncio.run(retrieval.retrieve(sales_profile, TokenBudget(3500)))


@pytest.fixture
def make_validation_context(dictionary):
    """Factory: ValidationContext over a profile/selection pair with the registry rules."""

    def factory(sql, profile, selection, sandbox=None, token=None, parse=False):
        ctx = ValidationContext(
            sql=sql,
            profile=profile,
            selection=selection,
            business_rules=dictionary.business_rules,
            sandbox=sandbox,
            token=token,
        )
        if parse:
            ctx.ast = parse_sql(sql)
        return ctx

    return factory


@pytest.fixture
def make_pipeline(analyzer, retrieval, assembler, dictionary):
    """Factory: pipeline over the real artifacts with a fake model and sandbox."""

    def factory(responses, sandbox=None, max_attempts=3, trace_sink=None):
        model = FakeModelClient(responses)
        pipeline = QueryPipeline(
            analyzer=analyzer,
            retrieval=retrieval,
            assembler=assembler,
            model=model,
            dictionary=dictionary,
            sandbox=sandbox if sandbox is not None else FakeSandbox(),
            trace_sink=trace_sink or RecordingTraceSink(),
            max_attempts=max_attempts,
        )
        return pipeline, model

    return factory
