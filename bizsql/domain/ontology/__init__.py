"""
Business ontology - term dictionary, glossary, domains and entity linking
"""

from bizsql.domain.ontology.models import (
    BusinessEntity,
    BusinessRule,
    DomainDefinition,
    EntityType,
    GlossaryEntry,
    QueryExample,
    RuleType,
    TermDefinition,
    TermMapping,
)
from bizsql.domain.ontology.registry import BusinessTermDictionary, normalize_phrase
from bizsql.domain.ontology.linker import EntityLinker, GrammaticalRole, tokenize

__all__ = [
    "BusinessEntity",
    "BusinessRule",
    "DomainDefinition",
    "EntityType",
    "GlossaryEntry",
    "QueryExample",
    "RuleType",
    "TermDefinition",
    "TermMapping",
    "BusinessTermDictionary",
    "normalize_phrase",
    "EntityLinker",
    "GrammaticalRole",
    "tokenize",
]
