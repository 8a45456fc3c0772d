"""
Business vocabulary data models

Represents how business terms map to database schema.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class EntityType(Enum):
    """Grammatical role a business entity plays in a question."""
    TABLE = "table"
    DIMENSION = "dimension"
    METRIC = "metric"
    VALUE = "value"


@dataclass(frozen=True)
class TermMapping:
    """One candidate schema location for a dictionary term"""
    table: str
    column: Optional[str] = None
    entity_type: EntityType = EntityType.TABLE
    literal_value: Optional[str] = None
    confidence: float = 1.0


@dataclass(frozen=True)
class TermDefinition:
    """A business term with its aliases and candidate mappings"""
    name: str
    concept: str
    entity_type: EntityType
    aliases: Tuple[str, ...] = ()
    mappings: Tuple[TermMapping, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class GlossaryEntry:
    """Glossary term that points at the tables answering questions about it"""
    term: str
    definition: str
    related_tables: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    confidence: float = 0.8


@dataclass(frozen=True)
class DomainDefinition:
    """Business domain used to bias relevance (e.g. Banking, Gaming)"""
    name: str
    keywords: Tuple[str, ...]
    priority: int = 100  # Lower wins ties
    tables: Tuple[str, ...] = ()
    description: Optional[str] = None


class RuleType(Enum):
    REQUIRED_FILTER = "required_filter"
    FORBIDDEN_COLUMN = "forbidden_column"


@dataclass(frozen=True)
class BusinessRule:
    """Declared rule the generated SQL must honour when it touches ``table``"""
    name: str
    rule_type: RuleType
    table: str
    column: str
    value: Optional[Any] = None
    description: str = ""


@dataclass(frozen=True)
class QueryExample:
    """Curated question/SQL pair used as a few-shot example"""
    question: str
    sql: str
    tables: Tuple[str, ...] = ()
    intent: Optional[str] = None


@dataclass(frozen=True)
class BusinessEntity:
    """
    A concept detected in the question.

    ``mapped_table`` is None when linking could not settle on one table;
    downstream consumers treat such entities as advisory only.
    """
    name: str
    entity_type: EntityType
    confidence: float
    concept: Optional[str] = None
    mapped_table: Optional[str] = None
    mapped_column: Optional[str] = None
    literal_value: Optional[str] = None
    source: str = "dictionary"  # "dictionary" | "fuzzy"
    candidates: Tuple[str, ...] = field(default=())  # Unresolved table choices, for diagnostics

    @property
    def is_mapped(self) -> bool:
        return self.mapped_table is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.entity_type.value,
            "concept": self.concept,
            "mapped_table": self.mapped_table,
            "mapped_column": self.mapped_column,
            "literal_value": self.literal_value,
            "confidence": round(self.confidence, 3),
            "source": self.source,
        }
