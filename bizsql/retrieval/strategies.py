"""
Table discovery strategies.

Each strategy reads the profile and the catalog snapshot and returns a
strategy-local score in [0, 1] per table name. Strategies never raise into
the engine for expected conditions (no embedder, General domain); they
simply return nothing.
"""

from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import numpy as np
from langchain_core.embeddings import Embeddings
from loguru import logger

from bizsql.config.constants import GENERAL_DOMAIN
from bizsql.config.settings import settings
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.retrieval.models import RetrievalStrategy
from bizsql.sql.catalog.snapshot import SchemaCatalog

StrategyScores = Dict[str, float]


def cosine_similarities(query: List[float], documents: np.ndarray) -> np.ndarray:
    query_vec = np.asarray(query, dtype=float)
    query_norm = np.linalg.norm(query_vec)
    doc_norms = np.linalg.norm(documents, axis=1)
    denominator = doc_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denominator > 0, documents @ query_vec / denominator, 0.0)
    return sims


class RetrievalStrategies:
    """
    The four discovery strategies plus the dispatch table the engine runs.

    Table embeddings are computed once per catalog version and reused.
    """

    def __init__(
        self,
        catalog: SchemaCatalog,
        dictionary: BusinessTermDictionary,
        embeddings: Optional[Embeddings] = None,
    ):
        self.catalog = catalog
        self.dictionary = dictionary
        self.embeddings = embeddings
        self._table_vectors: Dict[str, Tuple[List[str], np.ndarray]] = {}
        self.dispatch: Dict[RetrievalStrategy, Callable[[BusinessContextProfile], Awaitable[StrategyScores]]] = {
            RetrievalStrategy.SEMANTIC: self.semantic,
            RetrievalStrategy.DOMAIN: self.domain_affinity,
            RetrievalStrategy.ENTITY: self.entity_mapping,
            RetrievalStrategy.GLOSSARY: self.glossary,
        }

    async def _get_table_vectors(self) -> Tuple[List[str], np.ndarray]:
        cached = self._table_vectors.get(self.catalog.version)
        if cached is not None:
            return cached
        tables = self.catalog.list_tables()
        names = [t.name for t in tables]
        vectors = await self.embeddings.aembed_documents([t.describe() for t in tables])
        matrix = np.asarray(vectors, dtype=float)
        self._table_vectors[self.catalog.version] = (names, matrix)
        logger.info(f"Embedded {len(names)} table descriptions for catalog v{self.catalog.version}")
        return names, matrix

    async def semantic(self, profile: BusinessContextProfile) -> StrategyScores:
        if self.embeddings is None:
            logger.debug("Semantic strategy skipped: no embeddings configured")
            return {}
        names, matrix = await self._get_table_vectors()
        if not names:
            return {}
        query = await self.embeddings.aembed_query(profile.raw_question)
        sims = cosine_similarities(query, matrix)
        return {
            name: float(min(1.0, sim))
            for name, sim in zip(names, sims)
            if sim >= settings.semantic_min_similarity
        }

    async def domain_affinity(self, profile: BusinessContextProfile) -> StrategyScores:
        if profile.domain.name == GENERAL_DOMAIN:
            return {}
        declared = next((d for d in self.dictionary.domains if d.name == profile.domain.name), None)
        declared_tables = {t.lower() for t in declared.tables} if declared else set()
        scores = {}
        for table in self.catalog.list_tables():
            if profile.domain.name in table.domains or table.name.lower() in declared_tables:
                scores[table.name] = profile.domain.confidence
        return scores

    async def entity_mapping(self, profile: BusinessContextProfile) -> StrategyScores:
        scores: StrategyScores = {}
        for entity in profile.mapped_entities:
            table = self.catalog.get_table(entity.mapped_table)
            if table is None:
                continue
            scores[table.name] = max(scores.get(table.name, 0.0), entity.confidence)
        return scores

    async def glossary(self, profile: BusinessContextProfile) -> StrategyScores:
        scores: StrategyScores = {}
        for entry in self.dictionary.glossary_matches(profile.raw_question):
            for related in entry.related_tables:
                table = self.catalog.get_table(related)
                if table is None:
                    continue
                scores[table.name] = max(scores.get(table.name, 0.0), entry.confidence)
        return scores
