"""
Schema retrieval - multi-strategy table discovery under a token budget
"""

from bizsql.retrieval.models import ColumnCandidate, RetrievalStrategy, SchemaSelection, TableCandidate
from bizsql.retrieval.tokens import BudgetConfig, TokenBudget, estimate_tokens
from bizsql.retrieval.engine import SchemaRetrievalEngine

__all__ = [
    "ColumnCandidate",
    "RetrievalStrategy",
    "SchemaSelection",
    "TableCandidate",
    "BudgetConfig",
    "TokenBudget",
    "estimate_tokens",
    "SchemaRetrievalEngine",
]
