"""
Schema retrieval engine.

Pipeline for one request:
1. Run every discovery strategy concurrently, each under its own timeout
2. Merge scores per table as a normalized weighted sum
3. Drop tables below the relevance floor or matched by domain affinity alone
   (fail closed when none survive)
4. Add one-hop bridge tables needed to join two selected tables
5. Prune columns to keys, join columns, entity columns, rule columns and
   commonly used columns
6. Drop lowest-scoring tables until the rendered schema fits the budget, never
   one that still joins two kept tables; bridges leave with their endpoints
"""

import asyncio
from itertools import combinations
from typing import Dict, List, Optional, Set, Tuple

from langchain_core.embeddings import Embeddings
from loguru import logger

from bizsql.config.settings import settings
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.domain.ontology.models import RuleType
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.retrieval.models import (
    ColumnCandidate,
    RetrievalStrategy,
    SchemaSelection,
    TableCandidate,
    estimate_selection_tokens,
)
from bizsql.retrieval.strategies import RetrievalStrategies, StrategyScores
from bizsql.retrieval.tokens import TokenBudget
from bizsql.sql.catalog.models import FKRelationship, TableMeta
from bizsql.sql.catalog.snapshot import SchemaCatalog
from bizsql.sql.graph.path_finder import JoinPathFinder
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import NoRelevantSchemaError, TokenBudgetExceeded

# Column relevance by the reason it was kept
ENTITY_COLUMN_SCORE = 1.0
KEY_COLUMN_SCORE = 0.9
RULE_COLUMN_SCORE = 0.8
COMMON_COLUMN_SCORE = 0.7

# Strategies that carry evidence from the question itself
EVIDENCE_STRATEGIES = frozenset({
    RetrievalStrategy.SEMANTIC.value,
    RetrievalStrategy.ENTITY.value,
    RetrievalStrategy.GLOSSARY.value,
})


def strategy_weights() -> Dict[RetrievalStrategy, float]:
    """Configured per-strategy weights, normalized to sum to 1."""
    raw = {
        RetrievalStrategy.SEMANTIC: settings.semantic_strategy_weight,
        RetrievalStrategy.DOMAIN: settings.domain_strategy_weight,
        RetrievalStrategy.ENTITY: settings.entity_strategy_weight,
        RetrievalStrategy.GLOSSARY: settings.glossary_strategy_weight,
    }
    total = sum(raw.values())
    if total <= 0:
        raise ValueError("Retrieval strategy weights must sum to a positive number")
    return {strategy: weight / total for strategy, weight in raw.items()}


class SchemaRetrievalEngine:
    """Selects the bounded schema context for a profile."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        dictionary: BusinessTermDictionary,
        embeddings: Optional[Embeddings] = None,
        strategies: Optional[RetrievalStrategies] = None,
    ):
        self.catalog = catalog
        self.dictionary = dictionary
        self.strategies = strategies or RetrievalStrategies(catalog, dictionary, embeddings)
        self.path_finder = JoinPathFinder(catalog.all_foreign_keys())

    async def retrieve(
        self,
        profile: BusinessContextProfile,
        budget: TokenBudget,
        token: Optional[CancellationToken] = None,
    ) -> SchemaSelection:
        """
        Raises:
            NoRelevantSchemaError: no table cleared the relevance floor
            TokenBudgetExceeded: not even the top table fits the remaining budget
        """
        if token is not None:
            token.raise_if_cancelled("retrieval")

        results = await asyncio.gather(
            *(self._run_strategy(strategy, profile) for strategy in self.strategies.dispatch)
        )
        merged, matched_by = self._merge(dict(results))

        selected = {
            name: score for name, score in merged.items()
            if score >= settings.relevance_floor and matched_by[name] & EVIDENCE_STRATEGIES
        }
        logger.info(
            f"Retrieval merged {len(merged)} candidate tables, {len(selected)} above floor "
            f"{settings.relevance_floor}: { {n: round(s, 3) for n, s in sorted(selected.items())} }"
        )
        if not selected:
            raise NoRelevantSchemaError(
                "No table is relevant to this question; try naming a business metric or entity",
                stage="retrieval",
                profile=profile,
            )

        bridges, bridged_pairs = self._bridge_tables(selected)
        for bridge, score in bridges.items():
            selected[bridge] = score
            matched_by[bridge] = set()

        candidates = self._build_candidates(profile, selected, matched_by, set(bridges))
        selection = self._fit_to_budget(candidates, budget, bridged_pairs)

        logger.info(
            f"Selected {len(selection.tables)} tables ({selection.estimated_tokens} tokens, "
            f"{budget.remaining} remaining): {selection.table_names}"
        )
        return selection

    async def _run_strategy(
        self,
        strategy: RetrievalStrategy,
        profile: BusinessContextProfile,
    ) -> Tuple[RetrievalStrategy, StrategyScores]:
        try:
            scores = await asyncio.wait_for(
                self.strategies.dispatch[strategy](profile),
                timeout=settings.strategy_timeout_seconds,
            )
            logger.debug(f"Strategy {strategy.value}: {len(scores)} tables")
            return strategy, scores
        except asyncio.TimeoutError:
            logger.warning(
                f"Strategy {strategy.value} timed out after {settings.strategy_timeout_seconds}s; "
                f"continuing without it"
            )
        except Exception as e:
            logger.warning(f"Strategy {strategy.value} failed: {e}; continuing without it")
        return strategy, {}

    @staticmethod
    def _merge(results: Dict[RetrievalStrategy, StrategyScores]) -> Tuple[Dict[str, float], Dict[str, Set[str]]]:
        weights = strategy_weights()
        merged: Dict[str, float] = {}
        matched_by: Dict[str, Set[str]] = {}
        for strategy, scores in results.items():
            for table, score in scores.items():
                clipped = max(0.0, min(1.0, score))
                merged[table] = merged.get(table, 0.0) + weights[strategy] * clipped
                matched_by.setdefault(table, set()).add(strategy.value)
        return merged, matched_by

    def _bridge_tables(
        self, selected: Dict[str, float]
    ) -> Tuple[Dict[str, float], Dict[str, Set[Tuple[str, str]]]]:
        """
        One-hop tables needed to join selected pairs that have no direct foreign key.

        Returns bridge scores and, per bridge, the pairs it joins.
        """
        bridges: Dict[str, float] = {}
        bridged_pairs: Dict[str, Set[Tuple[str, str]]] = {}
        names = sorted(selected)
        for a, b in combinations(names, 2):
            if self.path_finder.direct_relationships(a, b):
                continue
            already_joined = any(
                self.path_finder.direct_relationships(a, c) and self.path_finder.direct_relationships(c, b)
                for c in names
                if c not in (a, b)
            )
            if already_joined:
                continue
            bridge = self.path_finder.find_bridge(a, b)
            if bridge is None or bridge in selected:
                continue
            score = settings.bridge_score_factor * min(selected[a], selected[b])
            bridges[bridge] = max(bridges.get(bridge, 0.0), score)
            bridged_pairs.setdefault(bridge, set()).add((a, b))
            logger.debug(f"Bridge {bridge} joins {a} and {b} (score {score:.3f})")
        return bridges, bridged_pairs

    def _build_candidates(
        self,
        profile: BusinessContextProfile,
        scores: Dict[str, float],
        matched_by: Dict[str, Set[str]],
        bridges: Set[str],
    ) -> List[TableCandidate]:
        names = set(scores)
        join_columns: Dict[str, Set[str]] = {}
        for rel in self.catalog.all_foreign_keys():
            if rel.from_table in names and rel.to_table in names:
                join_columns.setdefault(rel.from_table, set()).add(rel.from_column.lower())
                join_columns.setdefault(rel.to_table, set()).add(rel.to_column.lower())

        entity_columns: Dict[str, Set[str]] = {}
        for entity in profile.mapped_entities:
            if entity.mapped_column:
                entity_columns.setdefault(entity.mapped_table, set()).add(entity.mapped_column.lower())

        rules = self.dictionary.rules_for_tables(names)
        rule_columns: Dict[str, Set[str]] = {}
        forbidden: Dict[str, Set[str]] = {}
        for rule in rules:
            target = forbidden if rule.rule_type == RuleType.FORBIDDEN_COLUMN else rule_columns
            table = self.catalog.get_table(rule.table)
            if table is not None:
                target.setdefault(table.name, set()).add(rule.column.lower())

        candidates = []
        for name in names:
            table = self.catalog.get_table(name)
            columns = self._prune_columns(
                table,
                entity_columns.get(name, set()),
                join_columns.get(name, set()),
                rule_columns.get(name, set()),
                forbidden.get(name, set()),
            )
            candidates.append(TableCandidate(
                table_name=table.name,
                schema_name=table.schema,
                relevance_score=scores[name],
                matched_by=frozenset(matched_by.get(name, set())),
                business_purpose=table.business_purpose,
                columns=columns,
                via_bridge=name in bridges,
            ))
        return sorted(candidates, key=lambda c: (-c.relevance_score, c.table_name))

    @staticmethod
    def _prune_columns(
        table: TableMeta,
        entity_columns: Set[str],
        join_columns: Set[str],
        rule_columns: Set[str],
        forbidden: Set[str],
    ) -> Tuple[ColumnCandidate, ...]:
        kept = []
        for column in table.columns:
            lowered = column.name.lower()
            if lowered in forbidden:
                continue
            if lowered in entity_columns:
                score = ENTITY_COLUMN_SCORE
            elif column.is_key or lowered in join_columns:
                score = KEY_COLUMN_SCORE
            elif lowered in rule_columns:
                score = RULE_COLUMN_SCORE
            elif column.is_common:
                score = COMMON_COLUMN_SCORE
            else:
                continue
            kept.append(ColumnCandidate(
                column_name=column.name,
                business_meaning=column.business_meaning,
                is_key=column.is_key or lowered in join_columns,
                relevance_score=score,
                data_type=column.data_type,
            ))
        return tuple(kept)

    def _relationships_for(self, tables: List[TableCandidate]) -> Tuple[FKRelationship, ...]:
        names = {t.table_name for t in tables}
        return tuple(
            rel for rel in self.catalog.all_foreign_keys()
            if rel.from_table in names and rel.to_table in names
        )

    @staticmethod
    def _component_count(names: Set[str], relationships: Tuple[FKRelationship, ...]) -> int:
        adjacency: Dict[str, Set[str]] = {name: set() for name in names}
        for rel in relationships:
            adjacency[rel.from_table].add(rel.to_table)
            adjacency[rel.to_table].add(rel.from_table)
        seen: Set[str] = set()
        count = 0
        for start in sorted(names):
            if start in seen:
                continue
            count += 1
            stack = [start]
            while stack:
                current = stack.pop()
                if current not in seen:
                    seen.add(current)
                    stack.extend(adjacency[current] - seen)
        return count

    def _next_to_drop(self, tables: List[TableCandidate]) -> TableCandidate:
        """Lowest-scoring table whose removal leaves every kept pair as joinable as before."""
        components = self._component_count({t.table_name for t in tables}, self._relationships_for(tables))
        for candidate in reversed(tables):
            rest = [t for t in tables if t is not candidate]
            if self._component_count({t.table_name for t in rest}, self._relationships_for(rest)) <= components:
                return candidate
        return tables[-1]

    @staticmethod
    def _drop_orphaned_bridges(
        tables: List[TableCandidate],
        bridged_pairs: Dict[str, Set[Tuple[str, str]]],
    ) -> List[TableCandidate]:
        names = {t.table_name for t in tables}
        kept = []
        for table in tables:
            pairs = bridged_pairs.get(table.table_name, set())
            if table.via_bridge and not any(a in names and b in names for a, b in pairs):
                logger.info(f"Dropping bridge {table.table_name}: it no longer joins two selected tables")
                continue
            kept.append(table)
        return kept

    def _fit_to_budget(
        self,
        candidates: List[TableCandidate],
        budget: TokenBudget,
        bridged_pairs: Dict[str, Set[Tuple[str, str]]],
    ) -> SchemaSelection:
        tables = list(candidates)  # Sorted by descending score
        while tables:
            relationships = self._relationships_for(tables)
            estimated = estimate_selection_tokens(tables, relationships)
            if estimated <= budget.remaining:
                return SchemaSelection(
                    tables=tuple(tables),
                    relationships=relationships,
                    estimated_tokens=estimated,
                    catalog_version=self.catalog.version,
                )
            dropped = self._next_to_drop(tables)
            tables = [t for t in tables if t is not dropped]
            logger.info(
                f"Dropping {dropped.table_name} (score {dropped.relevance_score:.3f}) to fit "
                f"{estimated} tokens into {budget.remaining}"
            )
            tables = self._drop_orphaned_bridges(tables, bridged_pairs)

        raise TokenBudgetExceeded(
            f"No relevant table fits in the remaining {budget.remaining} tokens",
            stage="retrieval",
        )
