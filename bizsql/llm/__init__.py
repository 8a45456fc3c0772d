"""
LLM module - model factory, client and resilience helpers
"""

from bizsql.llm.client import LangChainModelClient, ModelClient, create_llm
from bizsql.llm.embeddings import create_embeddings
from bizsql.llm.resilience import CircuitBreaker, CircuitState, retry_async

__all__ = [
    "LangChainModelClient",
    "ModelClient",
    "create_llm",
    "create_embeddings",
    "CircuitBreaker",
    "CircuitState",
    "retry_async",
]
