"""
Business domain classification.

A domain scores on two signals: its keywords appearing in the question and
its tagged tables being hit by linked entities. The highest score wins;
equal scores go to the domain with the lower declared priority number.
"""

from typing import List, Sequence, Tuple

from loguru import logger

from bizsql.config.constants import GENERAL_DOMAIN
from bizsql.config.settings import settings
from bizsql.domain.context.models import DomainMatch
from bizsql.domain.ontology.models import BusinessEntity, DomainDefinition

KEYWORD_WEIGHT = 0.6
ENTITY_WEIGHT = 0.4
KEYWORD_SATURATION = 2  # Hits needed for a full keyword score


class DomainClassifier:
    def __init__(self, domains: Sequence[DomainDefinition], min_score: float = None, general_confidence: float = None):
        self.domains = tuple(domains)
        self.min_score = settings.domain_min_score if min_score is None else min_score
        self.general_confidence = settings.general_domain_confidence if general_confidence is None else general_confidence

    def score(self, normalized_question: str, entities: Sequence[BusinessEntity]) -> List[Tuple[DomainDefinition, float]]:
        padded = f" {normalized_question} "
        entity_tables = {e.mapped_table.lower() for e in entities if e.is_mapped}
        scored = []
        for domain in self.domains:
            hits = sum(1 for keyword in domain.keywords if f" {keyword} " in padded)
            keyword_score = min(1.0, hits / KEYWORD_SATURATION)
            domain_tables = {t.lower() for t in domain.tables}
            entity_score = len(entity_tables & domain_tables) / len(entity_tables) if entity_tables else 0.0
            scored.append((domain, KEYWORD_WEIGHT * keyword_score + ENTITY_WEIGHT * entity_score))
        return scored

    def classify(self, normalized_question: str, entities: Sequence[BusinessEntity]) -> DomainMatch:
        scored = self.score(normalized_question, entities)
        if not scored:
            return DomainMatch(GENERAL_DOMAIN, self.general_confidence)

        domain, best = min(scored, key=lambda item: (-item[1], item[0].priority, item[0].name))
        logger.debug(f"Domain scores: { {d.name: round(s, 2) for d, s in scored} }")

        if best < self.min_score:
            return DomainMatch(GENERAL_DOMAIN, self.general_confidence)
        return DomainMatch(domain.name, min(1.0, best))
