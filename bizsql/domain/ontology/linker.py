"""
Entity linking: question tokens -> business entities mapped to the schema.

Resolution order for each position in the token stream:
1. Longest dictionary n-gram (exact term name or alias)
2. Fuzzy match (difflib) against table and column business names

Dictionary candidates are narrowed by three filters, in order:
catalog existence, concept compatibility (a country term never lands on a
currency column), and the grammatical role implied by the preceding token.
If more than one mapping survives, the entity is emitted unmapped.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from bizsql.config.constants import FILTER_PREPOSITIONS, GROUPING_PREPOSITIONS, STOPWORDS
from bizsql.config.settings import settings
from bizsql.domain.ontology.models import BusinessEntity, EntityType, TermDefinition, TermMapping
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.sql.catalog.snapshot import SchemaCatalog

_TOKEN = re.compile(r"[a-z0-9]+")
_ARTICLES = frozenset({"the", "a", "an"})
_NUMERIC_TYPES = ("int", "decimal", "numeric", "float", "double", "real", "money")

# Confidence multipliers
ALIAS_MATCH_FACTOR = 0.9
AMBIGUOUS_CONFIDENCE = 0.4
FUZZY_FACTOR = 0.8


class GrammaticalRole(Enum):
    FILTER = "filter"      # "from UK", "in Germany"
    GROUPING = "grouping"  # "by country", "per player"
    REFERENCE = "reference"


# Entity types preferred for each role, most preferred first
ROLE_PREFERENCES: Dict[GrammaticalRole, Tuple[EntityType, ...]] = {
    GrammaticalRole.FILTER: (EntityType.VALUE, EntityType.DIMENSION),
    GrammaticalRole.GROUPING: (EntityType.DIMENSION,),
    GrammaticalRole.REFERENCE: (EntityType.TABLE, EntityType.METRIC),
}


def tokenize(text: str) -> List[str]:
    return _TOKEN.findall(text.lower())


@dataclass(frozen=True)
class _FuzzyTarget:
    table: str
    column: Optional[str]
    entity_type: EntityType


def infer_role(tokens: Sequence[str], index: int) -> GrammaticalRole:
    """Role of the phrase starting at ``index``, read from the nearest non-article token before it."""
    i = index - 1
    while i >= 0 and tokens[i] in _ARTICLES:
        i -= 1
    if i < 0:
        return GrammaticalRole.REFERENCE
    if tokens[i] in FILTER_PREPOSITIONS:
        return GrammaticalRole.FILTER
    if tokens[i] in GROUPING_PREPOSITIONS:
        return GrammaticalRole.GROUPING
    return GrammaticalRole.REFERENCE


class EntityLinker:
    """
    Links tokens to business entities using the injected dictionary.

    Deterministic for a fixed dictionary and catalog snapshot.
    """

    def __init__(self, dictionary: BusinessTermDictionary, fuzzy_cutoff: Optional[float] = None):
        self.dictionary = dictionary
        self.fuzzy_cutoff = fuzzy_cutoff if fuzzy_cutoff is not None else settings.fuzzy_match_cutoff

    def link(self, tokens: Sequence[str], catalog: SchemaCatalog) -> List[BusinessEntity]:
        tokens = [t.lower() for t in tokens]
        entities: List[BusinessEntity] = []
        seen: set = set()
        fuzzy_index: Optional[Dict[str, List[_FuzzyTarget]]] = None

        i = 0
        while i < len(tokens):
            matched = False
            for size in range(min(self.dictionary.max_phrase_words, len(tokens) - i), 0, -1):
                phrase = " ".join(tokens[i:i + size])
                definitions = self.dictionary.lookup_all(phrase)
                if not definitions:
                    continue
                term = definitions[0]
                if term.name not in seen:
                    seen.add(term.name)
                    role = infer_role(tokens, i)
                    entities.append(self._link_term(phrase, term, role, catalog))
                i += size
                matched = True
                break
            if matched:
                continue

            token = tokens[i]
            if token not in STOPWORDS and len(token) >= 3 and not token.isdigit() and token not in seen:
                if fuzzy_index is None:
                    fuzzy_index = self._build_fuzzy_index(catalog)
                entity = self._fuzzy_link(token, fuzzy_index)
                if entity is not None:
                    seen.add(token)
                    entities.append(entity)
            i += 1

        logger.debug(
            f"Linked {len(entities)} entities: "
            f"{[(e.name, e.mapped_table, e.mapped_column) for e in entities]}"
        )
        return entities

    # ------------------------------------------------------------------
    # Dictionary linking
    # ------------------------------------------------------------------

    def _link_term(
        self,
        phrase: str,
        term: TermDefinition,
        role: GrammaticalRole,
        catalog: SchemaCatalog,
    ) -> BusinessEntity:
        match_factor = 1.0 if self.dictionary.is_exact_term(phrase) else ALIAS_MATCH_FACTOR

        candidates = self._existing_mappings(term, catalog)
        candidates = self._concept_compatible(term, candidates, catalog)
        candidates = self._role_filtered(candidates, role)

        distinct = {(m.table, m.column) for m in candidates}
        if len(distinct) > 1:
            top = max(m.confidence for m in candidates)
            best = [m for m in candidates if m.confidence == top]
            if len({(m.table, m.column) for m in best}) == 1:
                candidates = best
                distinct = {(best[0].table, best[0].column)}

        if len(distinct) == 1:
            mapping = candidates[0]
            return BusinessEntity(
                name=phrase,
                entity_type=mapping.entity_type,
                confidence=min(1.0, mapping.confidence * match_factor),
                concept=term.concept,
                mapped_table=mapping.table,
                mapped_column=mapping.column,
                literal_value=mapping.literal_value,
            )

        if candidates:
            logger.warning(
                f"Term '{phrase}' is ambiguous between {sorted(t for t, _ in distinct)}; leaving it unmapped"
            )
        else:
            logger.warning(f"Term '{phrase}' has no mapping into the current catalog")
        return BusinessEntity(
            name=phrase,
            entity_type=term.entity_type,
            confidence=AMBIGUOUS_CONFIDENCE * match_factor,
            concept=term.concept,
            candidates=tuple(sorted({m.table for m in candidates})),
        )

    @staticmethod
    def _existing_mappings(term: TermDefinition, catalog: SchemaCatalog) -> List[TermMapping]:
        kept = []
        for mapping in term.mappings:
            table = catalog.get_table(mapping.table)
            if table is None:
                continue
            column_name = None
            if mapping.column:
                column = table.get_column(mapping.column)
                if column is None:
                    continue
                column_name = column.name
            # Canonical spelling from the catalog
            kept.append(TermMapping(
                table=table.name,
                column=column_name,
                entity_type=mapping.entity_type,
                literal_value=mapping.literal_value,
                confidence=mapping.confidence,
            ))
        return kept

    @staticmethod
    def _concept_compatible(
        term: TermDefinition,
        mappings: List[TermMapping],
        catalog: SchemaCatalog,
    ) -> List[TermMapping]:
        kept = []
        for mapping in mappings:
            if mapping.column:
                column = catalog.get_table(mapping.table).get_column(mapping.column)
                if column.concept and column.concept != term.concept:
                    logger.debug(
                        f"Rejected {mapping.table}.{mapping.column} for '{term.name}': "
                        f"column concept '{column.concept}' != term concept '{term.concept}'"
                    )
                    continue
            kept.append(mapping)
        return kept

    @staticmethod
    def _role_filtered(mappings: List[TermMapping], role: GrammaticalRole) -> List[TermMapping]:
        if len(mappings) <= 1:
            return mappings
        for preferred in ROLE_PREFERENCES[role]:
            matching = [m for m in mappings if m.entity_type == preferred]
            if matching:
                return matching
        return mappings

    # ------------------------------------------------------------------
    # Fuzzy fallback
    # ------------------------------------------------------------------

    @staticmethod
    def _build_fuzzy_index(catalog: SchemaCatalog) -> Dict[str, List[_FuzzyTarget]]:
        index: Dict[str, List[_FuzzyTarget]] = {}
        for table in catalog.list_tables():
            names = {table.business_name.lower()} if table.business_name else set()
            names.add(re.sub(r"^tbl_", "", table.name, flags=re.IGNORECASE).replace("_", " ").lower())
            for name in names:
                index.setdefault(name, []).append(_FuzzyTarget(table.name, None, EntityType.TABLE))
            for column in table.columns:
                if not column.business_name or column.is_key:
                    continue
                numeric = any(t in column.data_type.lower() for t in _NUMERIC_TYPES)
                entity_type = EntityType.METRIC if numeric else EntityType.DIMENSION
                index.setdefault(column.business_name.lower(), []).append(
                    _FuzzyTarget(table.name, column.name, entity_type)
                )
        return index

    def _fuzzy_link(self, token: str, index: Dict[str, List[_FuzzyTarget]]) -> Optional[BusinessEntity]:
        names = sorted(index)
        matches = difflib.get_close_matches(token, names, n=3, cutoff=self.fuzzy_cutoff)
        if not matches:
            return None

        best = matches[0]
        ratio = difflib.SequenceMatcher(None, token, best).ratio()
        targets = index[best]
        tables = sorted({t.table for t in targets})

        if len({(t.table, t.column) for t in targets}) > 1:
            logger.debug(f"Fuzzy match '{token}' -> '{best}' is ambiguous across {tables}")
            return BusinessEntity(
                name=token,
                entity_type=targets[0].entity_type,
                confidence=AMBIGUOUS_CONFIDENCE * ratio,
                source="fuzzy",
                candidates=tuple(tables),
            )

        target = targets[0]
        logger.debug(f"Fuzzy match '{token}' -> '{best}' ({target.table}.{target.column}, ratio={ratio:.2f})")
        return BusinessEntity(
            name=token,
            entity_type=target.entity_type,
            confidence=ratio * FUZZY_FACTOR,
            mapped_table=target.table,
            mapped_column=target.column,
            source="fuzzy",
        )
